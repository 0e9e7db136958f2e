
from amqp_archive.worker import cli


if __name__ == "__main__":
    cli()
