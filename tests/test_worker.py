from amqp_archive.worker import main


def test_main_without_queues_prints_usage(capsys):
    assert main([]) == 1
    err = capsys.readouterr().err
    assert "queue-name [queue-name...]" in err
    assert "TRANSLATE_CONTENT" in err
