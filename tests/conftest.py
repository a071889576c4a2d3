import json

import pytest

from redirect_server import create_app
from redirect_table import RedirectTable


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"redirections": {"/old": "/new"}}), encoding="utf-8")
    return path


@pytest.fixture
def table(config_file):
    table = RedirectTable(status_code=302)
    table.load_file(config_file)
    return table


@pytest.fixture
def app(table):
    app = create_app(table)
    app.config.update(TESTING=True)
    return app


@pytest.fixture
def client(app):
    return app.test_client()
