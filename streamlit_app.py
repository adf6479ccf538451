"""Streamlit entrypoint: configure logging, then render the Home page."""

import logging
from importlib import import_module

import streamlit as st

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: int = logging.INFO) -> None:
    """Send ``anamnesis`` log records to stderr once per process."""

    logger = logging.getLogger("anamnesis")
    if logger.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(level)


def main() -> None:
    """Render the Home page when the app entrypoint is loaded."""

    configure_logging()
    try:
        home_module = import_module("Home")
    except ModuleNotFoundError:
        st.error("Home page module not found.")
        return

    home_module.main()


if __name__ == "__main__":
    main()
