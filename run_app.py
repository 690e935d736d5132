# run_app.py
# Launcher for the frozen build: starts the Streamlit server on app.py.
import os
import sys

import streamlit.web.cli as stcli


def resolve_path(path):
    if getattr(sys, "frozen", False):
        basedir = sys._MEIPASS
    else:
        basedir = os.path.dirname(__file__)
    return os.path.join(basedir, path)


if __name__ == "__main__":
    os.environ["STREAMLIT_SERVER_HEADLESS"] = "true"
    # config.DB_URL reads INVENTARIS_DB_URL at import time. A relative sqlite path would
    # land in the onefile extraction dir (_MEIPASS), which is wiped on exit, so pin
    # the inventory database to the directory the executable is started from.
    # An INVENTARIS_DB_URL already set by the school's admin wins.
    os.environ.setdefault("INVENTARIS_DB_URL", f"sqlite:///{os.path.join(os.getcwd(), 'inventaris.db')}")

    sys.argv = [
        "streamlit",
        "run",
        resolve_path("app.py"),
        "--global.developmentMode=false",
    ]
    sys.exit(stcli.main())
