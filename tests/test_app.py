"""
Tests for the HTTP routes.
"""
import uuid

import pytest
from fastapi.testclient import TestClient

from grid_server.app import app


@pytest.fixture
def client():
    """TestClient with a fresh in-memory database per test."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def people(client):
    """A table with a text Name column and a number Age column."""
    table = client.post("/api/tables", json={"name": "People"}).json()
    name = client.post(f"/api/tables/{table['id']}/columns", json={"name": "Name", "type": "text"}).json()
    age = client.post(f"/api/tables/{table['id']}/columns", json={"name": "Age", "type": "number"}).json()
    return {"table": table["id"], "name": name["id"], "age": age["id"]}


def window(client, table_id, **body):
    return client.post(f"/api/tables/{table_id}/rows/window", json=body)


class TestHealth:
    """Tests for health endpoints"""

    def test_healthz(self, client):
        """Should report healthy"""
        response = client.get("/healthz")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestColumns:
    """Tests for column routes"""

    def test_columns_ordered_by_order_index(self, client, people):
        """Should list columns in creation order with increasing orderIndex"""
        columns = client.get(f"/api/tables/{people['table']}/columns").json()
        assert [c["name"] for c in columns] == ["Name", "Age"]
        assert [c["orderIndex"] for c in columns] == [0, 1]
        assert columns[1]["type"] == "number"

    def test_unknown_column_type(self, client, people):
        """Should reject column types outside the declared set"""
        response = client.post(f"/api/tables/{people['table']}/columns", json={"name": "X", "type": "date"})
        assert response.status_code == 422

    def test_columns_of_missing_table(self, client):
        """Should return 404 for a missing table"""
        response = client.get(f"/api/tables/{uuid.uuid4()}/columns")
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "NOT_FOUND"


class TestRows:
    """Tests for row creation and windowing"""

    def test_create_row_appends(self, client, people):
        """Should assign placement keys 0, 1, 2 in order"""
        indexes = [client.post(f"/api/tables/{people['table']}/rows").json()["index"] for _ in range(3)]
        assert indexes == [0, 1, 2]

    def test_window_defaults(self, client, people):
        """Should return an empty window for an empty table"""
        response = window(client, people["table"])
        assert response.status_code == 200
        assert response.json() == {"rows": [], "totalCount": 0, "windowStart": 0}

    @pytest.mark.parametrize("body", [{"windowSize": 0}, {"windowSize": 1001}, {"startIndex": -1}])
    def test_window_request_bounds(self, client, people, body):
        """Should reject out-of-range window requests"""
        assert window(client, people["table"], **body).status_code == 422

    def test_invalid_filter_column(self, client, people):
        """Should reject filters on unknown columns with INVALID_COLUMN"""
        response = window(client, people["table"], filters=[
            {"columnId": str(uuid.uuid4()), "operator": "isEmpty"},
        ])
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "INVALID_COLUMN"

    def test_unsupported_operator(self, client, people):
        """Should reject gt on a text column with UNSUPPORTED_OPERATOR"""
        response = window(client, people["table"], filters=[
            {"columnId": people["name"], "operator": "gt", "value": 3},
        ])
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "UNSUPPORTED_OPERATOR"

    def test_malformed_number_value(self, client, people):
        """Should reject a non-numeric value for a number filter"""
        response = window(client, people["table"], filters=[
            {"columnId": people["age"], "operator": "lt", "value": "lots"},
        ])
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "MALFORMED_FILTER_VALUE"


class TestUpdateCell:
    """Tests for the single-cell update route"""

    def test_number_cell_round_trip(self, client, people):
        """Should store "42" as a number that numeric filters find"""
        row = client.post(f"/api/tables/{people['table']}/rows").json()
        client.post(f"/api/tables/{people['table']}/rows")

        response = client.patch(f"/api/rows/{row['id']}/cells/{people['age']}", json={"value": "42"})
        assert response.json() == {"ok": True}

        result = window(client, people["table"], filters=[
            {"columnId": people["age"], "operator": "gt", "value": 41.9},
        ]).json()
        assert result["totalCount"] == 1
        assert result["rows"][0]["values"][people["age"]] == 42

    def test_blank_text_stored_as_null(self, client, people):
        """Should write whitespace-only text as an explicit null"""
        row = client.post(f"/api/tables/{people['table']}/rows").json()
        client.patch(f"/api/rows/{row['id']}/cells/{people['name']}", json={"value": "   "})

        stored = window(client, people["table"]).json()["rows"][0]["values"]
        assert stored == {people["name"]: None}

    def test_update_keeps_other_keys(self, client, people):
        """Should overwrite only the addressed column of the row"""
        row = client.post(f"/api/tables/{people['table']}/rows").json()
        client.patch(f"/api/rows/{row['id']}/cells/{people['name']}", json={"value": "Ada"})
        client.patch(f"/api/rows/{row['id']}/cells/{people['age']}", json={"value": "36"})

        stored = window(client, people["table"]).json()["rows"][0]["values"]
        assert stored == {people["name"]: "Ada", people["age"]: 36}

    def test_missing_row(self, client, people):
        """Should return 404 for an unknown row"""
        response = client.patch(f"/api/rows/{uuid.uuid4()}/cells/{people['name']}", json={"value": "x"})
        assert response.status_code == 404

    def test_column_from_other_table(self, client, people):
        """Should refuse a column that belongs to a different table"""
        other = client.post("/api/tables", json={"name": "Other"}).json()
        column = client.post(f"/api/tables/{other['id']}/columns", json={"name": "C", "type": "text"}).json()
        row = client.post(f"/api/tables/{people['table']}/rows").json()

        response = client.patch(f"/api/rows/{row['id']}/cells/{column['id']}", json={"value": "x"})

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "INVALID_COLUMN"


class TestExport:
    """Tests for CSV export"""

    def test_export_csv(self, client, people):
        """Should export a header row and one line per row in placement order"""
        for name, age in [("Ada", "36"), ("Linus", "")]:
            row = client.post(f"/api/tables/{people['table']}/rows").json()
            client.patch(f"/api/rows/{row['id']}/cells/{people['name']}", json={"value": name})
            client.patch(f"/api/rows/{row['id']}/cells/{people['age']}", json={"value": age})

        response = client.get(f"/api/tables/{people['table']}/export.csv")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert response.text.splitlines() == ["Name,Age", "Ada,36", "Linus,"]
