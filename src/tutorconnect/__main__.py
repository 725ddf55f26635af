"""Runs the TutorConnect development server: ``python -m tutorconnect``."""

from . import TutorConnect
from .config import configure_logging, get_settings


def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    app = TutorConnect(settings=settings)
    app.run(host=settings.host, port=settings.port, debug=settings.debug)


if __name__ == "__main__":
    main()
