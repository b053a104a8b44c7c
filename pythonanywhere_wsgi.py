# WSGI entry point for hosting Biblioteca Virtual on PythonAnywhere.
#
# Point the web app's WSGI configuration file at this module. The project
# directory defaults to the folder holding this file; set BIBLIOTECA_HOME to
# override it. Settings (SECRET_KEY, DATABASE_URL, UPLOAD_FOLDER, ...) are
# read from the .env file in that directory.

import os
import sys

from dotenv import load_dotenv

BIBLIOTECA_HOME = os.environ.get(
    "BIBLIOTECA_HOME", os.path.dirname(os.path.abspath(__file__))
)
if BIBLIOTECA_HOME not in sys.path:
    sys.path.insert(0, BIBLIOTECA_HOME)

load_dotenv(os.path.join(BIBLIOTECA_HOME, ".env"))

from biblioteca import create_app  # noqa: E402

application = create_app()
