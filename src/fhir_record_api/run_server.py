"""Executable entry point for launching the FHIR Record FastAPI application.

Process managers can import the stable ``app`` object from
``fhir_record_api.app``; for local development run
``python -m fhir_record_api.run_server`` or the ``fhir-record-server`` script.

Environment Variables:
    PORT (int): Override listening port (default 8000).
    FHIR_*: FHIR processing options, see :mod:`fhir_record_api.config`.

Example:
    $ PORT=9000 FHIR_VERSION=R5 fhir-record-server
"""

from __future__ import annotations

import os

import uvicorn

from .app import app


def main() -> None:
    """Launch the ASGI server with development-friendly defaults."""
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))


if __name__ == "__main__":
    main()
