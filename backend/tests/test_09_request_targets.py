"""
Tests 901-917: Request target extraction

Ids reach the gate from the path, or from the JSON body for creation calls
and for routes whose path names no category.  Driven over HTTP through
``require_access`` on a small app with the same dependencies as the API.
"""
import httpx
import pytest
import pytest_asyncio
from fastapi import Depends, FastAPI

from conftest import auth_headers
from keystone_access.database import get_db
from keystone_access.middleware.auth import _as_int, require_access
from keystone_access.services.access_gate import AccessDecision, Operation

OWNER = auth_headers("owner-uid")
REVIEWER = auth_headers("reviewer-uid")


def _decision_dict(decision: AccessDecision) -> dict:
    return {
        "category_id": decision.category_id,
        "report_id": decision.report_id,
        "role": decision.role.value if decision.role else None,
    }


@pytest_asyncio.fixture
async def target_client(session_factory):
    """Client for an app whose routes only run the access dependency."""
    app = FastAPI()

    @app.post("/reports/{report_id}/categories")
    async def create_category(
        report_id: int,
        decision: AccessDecision = Depends(require_access(Operation.CREATE_CATEGORY)),
    ):
        return _decision_dict(decision)

    @app.post("/reports/{report_id}/categories/{parent_category_id}/children")
    async def create_child(
        report_id: int,
        parent_category_id: int,
        decision: AccessDecision = Depends(require_access(Operation.CREATE_CATEGORY)),
    ):
        return _decision_dict(decision)

    @app.post("/expenses")
    async def submit_expense(
        decision: AccessDecision = Depends(require_access(Operation.SUBMIT_EXPENSE)),
    ):
        return _decision_dict(decision)

    @app.post("/categories/{category_id}/expenses")
    async def submit_expense_in(
        category_id: int,
        decision: AccessDecision = Depends(require_access(Operation.SUBMIT_EXPENSE)),
    ):
        return _decision_dict(decision)

    async def _override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


class TestRequestTargets:

    # =================================================================
    # Test 901: id parsing
    # =================================================================

    @pytest.mark.parametrize("value,expected", [
        (7, 7),
        ("7", 7),
        (None, None),
        ("", None),
        (True, False),
        (False, False),
        (2.9, False),
        (2.0, False),
        ("abc", False),
        ("-1", False),
        ("²", False),
        ([1], False),
    ])
    def test_901_id_parsing(self, value, expected):
        """Only ints and digit strings are ids; bools and floats are malformed."""
        assert _as_int(value) == expected
        if expected is False:
            assert _as_int(value) is False

    # =================================================================
    # Tests 906-910: creation target from the body
    # =================================================================

    async def test_906_camel_case_parent(self, target_client, scenario):
        """parentCategoryId in the body is the creation target."""
        resp = await target_client.post(
            f"/reports/{scenario.report.id}/categories",
            json={"name": "Fuel", "parentCategoryId": scenario.b.id},
            headers=REVIEWER,
        )
        assert resp.status_code == 200
        assert resp.json() == {
            "category_id": scenario.b.id,
            "report_id": scenario.report.id,
            "role": "REVIEWER",
        }

    async def test_907_snake_case_parent(self, target_client, scenario):
        """parent_category_id is accepted too, also as a digit string."""
        resp = await target_client.post(
            f"/reports/{scenario.report.id}/categories",
            json={"name": "Fuel", "parent_category_id": str(scenario.c.id)},
            headers=REVIEWER,
        )
        assert resp.status_code == 200
        assert resp.json()["category_id"] == scenario.c.id

    async def test_908_no_parent_is_root_creation(self, target_client, scenario):
        """Without a parent only the owner may create; empty string counts as absent."""
        resp = await target_client.post(
            f"/reports/{scenario.report.id}/categories",
            json={"name": "Lodging", "parentCategoryId": ""},
            headers=OWNER,
        )
        assert resp.status_code == 200
        assert resp.json() == {
            "category_id": None,
            "report_id": scenario.report.id,
            "role": "ADMIN",
        }

        resp = await target_client.post(
            f"/reports/{scenario.report.id}/categories",
            json={"name": "Lodging"},
            headers=REVIEWER,
        )
        assert resp.status_code == 403

    async def test_909_path_parent_wins_over_body(self, target_client, scenario):
        """A parent in the path overrides the one in the body."""
        resp = await target_client.post(
            f"/reports/{scenario.report.id}/categories/{scenario.b.id}/children",
            json={"name": "Fuel", "parentCategoryId": scenario.a.id},
            headers=REVIEWER,
        )
        assert resp.status_code == 200
        assert resp.json()["category_id"] == scenario.b.id

        resp = await target_client.post(
            f"/reports/{scenario.report.id}/categories/{scenario.a.id}/children",
            json={"name": "Fuel", "parentCategoryId": scenario.b.id},
            headers=REVIEWER,
        )
        assert resp.status_code == 403

    @pytest.mark.parametrize("bad", [True, 2.9, "abc", "-1", [1], {"id": 1}])
    async def test_910_malformed_parent_is_bad_request(self, target_client, scenario, bad):
        """A malformed parent id is a 400, never a different category."""
        resp = await target_client.post(
            f"/reports/{scenario.report.id}/categories",
            json={"name": "Fuel", "parentCategoryId": bad},
            headers=OWNER,
        )
        assert resp.status_code == 400
        assert resp.json()["detail"]["error"] == "bad_request"

    # =================================================================
    # Tests 913-917: category target from the body
    # =================================================================

    async def test_913_body_category_when_path_has_none(self, target_client, scenario):
        """categoryId and category_id both name the target."""
        for key in ("categoryId", "category_id"):
            resp = await target_client.post(
                "/expenses", json={key: scenario.c.id, "amount": 12}, headers=REVIEWER
            )
            assert resp.status_code == 200
            assert resp.json()["category_id"] == scenario.c.id

    async def test_914_body_category_is_checked(self, target_client, scenario):
        """The body target is authorized like a path target."""
        resp = await target_client.post(
            "/expenses", json={"categoryId": scenario.a.id}, headers=REVIEWER
        )
        assert resp.status_code == 403

    async def test_915_missing_body_category(self, target_client, scenario):
        """No category anywhere is a 400."""
        resp = await target_client.post("/expenses", json={"amount": 12}, headers=REVIEWER)
        assert resp.status_code == 400

    async def test_916_path_category_wins_over_body(self, target_client, scenario):
        """With a category in the path the body is not consulted."""
        resp = await target_client.post(
            f"/categories/{scenario.c.id}/expenses",
            json={"categoryId": scenario.a.id},
            headers=REVIEWER,
        )
        assert resp.status_code == 200
        assert resp.json()["category_id"] == scenario.c.id

    async def test_917_unrelated_malformed_field_ignored(self, target_client, scenario):
        """Ids the operation does not read cannot fail the request."""
        resp = await target_client.post(
            f"/categories/{scenario.c.id}/expenses",
            json={"categoryId": True, "parentCategoryId": "n/a"},
            headers=REVIEWER,
        )
        assert resp.status_code == 200
