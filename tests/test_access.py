import pytest

from shiptrack.access import Action, Decision, decide, home_zone, Zone
from shiptrack.models import Role

from factories import add_role, add_shipment, login


class TestDecide:
    @pytest.mark.parametrize("path", ["/admin", "/admin/shipments", "/seller", "/seller/bulk", "/dashboard/history"])
    def test_anonymous_protected_zones_go_to_login(self, path):
        assert decide(None, path) == Decision(Action.REDIRECT_LOGIN, "/login")

    @pytest.mark.parametrize("path", ["/driver", "/driver/tasks", "/", "/track/UEX1", "/login", "/v1/shipment/track"])
    def test_anonymous_open_paths(self, path):
        assert decide(None, path).action is Action.ALLOW

    def test_seller_cannot_enter_admin(self):
        decision = decide(Role.SELLER, "/admin/shipments")
        assert decision == Decision(Action.REDIRECT_HOME, "/seller")

    @pytest.mark.parametrize(
        "role,path,home",
        [
            (Role.ADMIN, "/seller", "/admin/shipments"),
            (Role.ADMIN, "/driver", "/admin/shipments"),
            (Role.ADMIN, "/dashboard", "/admin/shipments"),
            (Role.SELLER, "/driver", "/seller"),
            (Role.SELLER, "/dashboard/book", "/seller"),
            (Role.USER, "/admin", "/dashboard"),
            (Role.USER, "/seller/create", "/dashboard"),
            (Role.USER, "/driver", "/dashboard"),
            (Role.DRIVER, "/admin/rates", "/driver"),
            (Role.STAFF, "/seller", "/driver"),
            (Role.STAFF, "/dashboard", "/driver"),
        ],
    )
    def test_cross_zone_redirects_home(self, role, path, home):
        assert decide(role, path) == Decision(Action.REDIRECT_HOME, home)

    @pytest.mark.parametrize(
        "role,path",
        [
            (Role.ADMIN, "/admin/shipments/UEX1"),
            (Role.SELLER, "/seller/developer"),
            (Role.USER, "/dashboard"),
            (Role.DRIVER, "/driver"),
            (Role.STAFF, "/driver/tasks"),
            (Role.SELLER, "/track/UEX1"),
            (Role.USER, "/shipment/bulk"),
        ],
    )
    def test_own_zone_and_neutral_paths_allowed(self, role, path):
        assert decide(role, path).action is Action.ALLOW

    @pytest.mark.parametrize(
        "role,home",
        [(Role.ADMIN, "/admin/shipments"), (Role.SELLER, "/seller"), (Role.DRIVER, "/driver"), (Role.USER, "/dashboard")],
    )
    def test_signed_in_users_skip_login_pages(self, role, home):
        assert decide(role, "/login") == Decision(Action.REDIRECT_HOME, home)
        assert decide(role, "/signup") == Decision(Action.REDIRECT_HOME, home)

    def test_unknown_role_name_is_a_customer(self):
        assert home_zone("superuser") is Zone.CUSTOMER
        assert decide("superuser", "/admin") == Decision(Action.REDIRECT_HOME, "/dashboard")

    @pytest.mark.parametrize("path", ["/adminpanel", "/admin-tools", "/administrators-guide"])
    def test_zone_prefix_is_a_plain_prefix(self, path):
        assert decide(Role.SELLER, path) == Decision(Action.REDIRECT_HOME, "/seller")
        assert decide(None, path) == Decision(Action.REDIRECT_LOGIN, "/login")
        assert decide(Role.ADMIN, path).action is Action.ALLOW

    @pytest.mark.parametrize("path", ["/static/app.css", "/favicon.ico", "/api/auth/callback", "/admin/logo.png"])
    def test_excluded_paths_always_pass(self, path):
        assert decide(None, path).action is Action.ALLOW
        assert decide(Role.USER, path).action is Action.ALLOW


class TestBoundaryMiddleware:
    def test_anonymous_admin_request_redirects_to_login(self, client):
        resp = client.post("/admin/shipments/UEX1/status", json={"status": "delivered", "location": "Hub"})
        assert resp.status_code == 303
        assert resp.headers["location"] == "/login"

    def test_seller_is_sent_back_to_seller_zone(self, client, session):
        add_role(session, "seller-1", Role.SELLER)
        login(client, "seller-1")
        resp = client.post("/admin/shipments/UEX1/status", json={"status": "delivered", "location": "Hub"})
        assert resp.status_code == 303
        assert resp.headers["location"] == "/seller"

    def test_user_without_role_row_is_a_customer(self, client):
        login(client, "someone")
        resp = client.get("/seller/developer/api-key")
        assert resp.status_code == 303
        assert resp.headers["location"] == "/dashboard"

    def test_logged_in_user_hitting_login_goes_home(self, client, session):
        add_role(session, "driver-1", Role.DRIVER)
        login(client, "driver-1")
        resp = client.post("/login", data={"user_id": "driver-1"})
        assert resp.status_code == 303
        assert resp.headers["location"] == "/driver"

    def test_driver_zone_is_open_to_anonymous(self, client):
        # passes the boundary; the handler itself wants a session
        resp = client.post("/driver/shipments/UEX1/status", json={"status": "delivered", "location": "Hub"})
        assert resp.status_code == 401
        assert resp.json() == {"error": "Not authenticated"}

    def test_admin_passes(self, client, session, store):
        add_role(session, "admin-1", Role.ADMIN)
        add_shipment(store, "UEX10000001")
        login(client, "admin-1")
        resp = client.post("/admin/shipments/UEX10000001/status", json={"status": "manifested", "location": "Hub"})
        assert resp.status_code == 200

    def test_logout_clears_session(self, client, session):
        add_role(session, "admin-1", Role.ADMIN)
        login(client, "admin-1")
        assert client.post("/logout").json() == {"ok": True}
        resp = client.post("/admin/shipments/UEX1/status", json={"status": "delivered", "location": "Hub"})
        assert resp.headers["location"] == "/login"
