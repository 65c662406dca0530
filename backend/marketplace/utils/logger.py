import logging


def get_logger(name: str) -> logging.Logger:
    """Module logger; handlers and format are configured once in create_app()."""
    return logging.getLogger(name)
