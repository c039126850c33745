"""Network access: gateway retries, dispatcher ordering and NAS adapters."""
import json
import threading
from unittest.mock import MagicMock

import httpx
import pytest
from sqlmodel import select

from linkledger.models import NetworkAction
from linkledger.services.network_dispatcher import NetworkActionDispatcher, NetworkCommand
from linkledger.services.network_gateway import (
    NetworkAccessGateway,
    find_standing_discrepancies,
    list_network_actions,
)
from linkledger.services.router_service import RouterConnectionError, RouterService
from linkledger.utils.device_clients.adapter_factory import get_access_adapter
from linkledger.utils.device_clients.adapters import (
    AccessAccount,
    MikrotikRouterAdapter,
    NetworkCommandError,
    RadiusAdapter,
)
from linkledger.utils.speed import BandwidthLimits


def all_actions(session, client_id):
    return session.exec(
        select(NetworkAction).where(NetworkAction.client_id == client_id).order_by(NetworkAction.id)
    ).all()


# ---------------------------------------------------------------------------
# NetworkAccessGateway
# ---------------------------------------------------------------------------

class TestGateway:
    def test_disconnect_is_idempotent(self, gateway, make_client, session, adapter):
        client = make_client()
        version = client.version

        assert gateway.disconnect(client.id) is True
        assert gateway.disconnect(client.id) is True

        assert adapter.calls == [("suspend", client.id, True), ("suspend", client.id, False)]
        assert [a.success for a in all_actions(session, client.id)] == [True, True]
        session.refresh(client)
        assert client.version == version

    def test_transient_errors_are_retried_with_backoff(
        self, session_factory, adapter_provider, settings, make_client, session, adapter
    ):
        sleeps = []
        gateway = NetworkAccessGateway(
            session_factory=session_factory,
            adapter_provider=adapter_provider,
            settings=settings.model_copy(
                update={"network_backoff_base_seconds": 1, "network_backoff_max_seconds": 30}
            ),
            sleep=sleeps.append,
        )
        client = make_client()
        adapter.fail_next = 2

        assert gateway.reconnect(client.id, triggered_by="webhook") is True

        [action] = all_actions(session, client.id)
        assert action.success is True
        assert action.attempts == 3
        assert action.triggered_by == "webhook"
        assert sleeps == [1, 2]

    def test_exhausted_retries_leave_a_failed_action(self, gateway, make_client, session, adapter, sleeps):
        client = make_client()
        adapter.fail_next = 5

        assert gateway.disconnect(client.id) is False

        [action] = all_actions(session, client.id)
        assert action.success is False
        assert action.attempts == 3
        assert "connection refused" in action.error_message
        assert len(sleeps) == 2

    def test_command_errors_are_not_retried(self, gateway, make_client, session, adapter):
        client = make_client()
        adapter.fail_next = 1
        adapter.error_factory = lambda: NetworkCommandError("no IP address")

        assert gateway.disconnect(client.id) is False
        [action] = all_actions(session, client.id)
        assert action.attempts == 1

    def test_unknown_client_records_nothing(self, gateway, session):
        import uuid

        assert gateway.disconnect(uuid.uuid4()) is False
        assert session.exec(select(NetworkAction)).all() == []

    def test_update_bandwidth_defaults_to_package_speed(self, gateway, make_client, adapter):
        client = make_client(speed="10Mbps")
        assert gateway.update_bandwidth(client.id) is True
        assert adapter.bandwidth[client.id] == "5000k/10000k"

    def test_update_bandwidth_with_explicit_limits(self, gateway, make_client, adapter):
        client = make_client(speed="10Mbps")
        gateway.update_bandwidth(client.id, BandwidthLimits(2_000, 8_000))
        assert adapter.bandwidth[client.id] == "2000k/8000k"


class TestDiscrepancies:
    def test_latest_failed_action_is_a_discrepancy(self, gateway, make_client, session, adapter):
        healed = make_client()
        stuck = make_client()

        adapter.fail_next = 3
        gateway.disconnect(healed.id)
        gateway.disconnect(healed.id)
        adapter.fail_next = 3
        gateway.disconnect(stuck.id)

        assert [a.client_id for a in find_standing_discrepancies(session)] == [stuck.id]

    def test_list_failed_only(self, gateway, make_client, session, adapter):
        client = make_client()
        gateway.disconnect(client.id)
        adapter.fail_next = 3
        gateway.reconnect(client.id)

        failed = list_network_actions(session, client_id=client.id, failed_only=True)
        assert [a.action for a in failed] == ["reconnect"]
        assert len(list_network_actions(session, client_id=client.id)) == 2


# ---------------------------------------------------------------------------
# NetworkActionDispatcher
# ---------------------------------------------------------------------------

class BlockingGateway:
    def __init__(self):
        self.release = threading.Event()
        self.started = threading.Event()
        self.executed = []

    def _record(self, action, client_id):
        self.started.set()
        self.release.wait(timeout=5)
        self.executed.append((action, client_id))
        return True

    def disconnect(self, client_id, triggered_by):
        return self._record("disconnect", client_id)

    def reconnect(self, client_id, triggered_by):
        return self._record("reconnect", client_id)

    def update_bandwidth(self, client_id, limits, triggered_by):
        return self._record("update_bandwidth", client_id)


class TestDispatcher:
    def test_per_client_order_and_collapsing(self):
        import uuid

        gateway = BlockingGateway()
        dispatcher = NetworkActionDispatcher(gateway, max_workers=2)
        client_id = uuid.uuid4()
        cut = NetworkCommand(client_id, "disconnect", "scheduler")
        back = NetworkCommand(client_id, "reconnect", "webhook")

        assert dispatcher.submit(cut) is True
        assert dispatcher.submit(cut) is False
        assert dispatcher.submit(back) is True
        assert dispatcher.submit(back) is False
        assert dispatcher.submit(cut) is True

        gateway.release.set()
        dispatcher.shutdown(wait=True)

        assert [action for action, _ in gateway.executed] == ["disconnect", "reconnect", "disconnect"]

    def test_synchronous_mode_runs_inline(self, dispatcher, make_client, adapter):
        client = make_client()
        dispatcher.submit(NetworkCommand(client.id, "disconnect", "manual"))
        assert client.id in adapter.suspended

    def test_unknown_action_does_not_crash_the_queue(self, dispatcher, make_client, adapter):
        client = make_client()
        dispatcher.submit(NetworkCommand(client.id, "reboot", "manual"))
        dispatcher.submit(NetworkCommand(client.id, "disconnect", "manual"))
        assert adapter.calls == [("suspend", client.id, True)]


# ---------------------------------------------------------------------------
# MikroTik adapter
# ---------------------------------------------------------------------------

@pytest.fixture
def routeros():
    """MagicMock RouterOS API with one resource mock per menu path."""
    resources = {}

    def get_resource(path):
        if path not in resources:
            resource = MagicMock(name=path)
            resource.get.return_value = []
            resources[path] = resource
        return resources[path]

    api = MagicMock()
    api.get_resource.side_effect = get_resource
    api.resources = get_resource
    return api


def account(method="address_list", **overrides):
    fields = dict(
        client_id="c-1",
        suspension_method=method,
        router_host="192.0.2.1",
        ip_address="10.0.0.7",
        limits=BandwidthLimits(10_000, 10_000),
    )
    fields.update(overrides)
    return AccessAccount(**fields)


class TestMikrotikAdapter:
    def test_blacklist_suspend_adds_entry(self, routeros):
        adapter = MikrotikRouterAdapter("192.0.2.1", "api", "pw", api=routeros)
        result = adapter.suspend(account())

        assert result["changed"] is True
        routeros.resources("/ip/firewall/address-list").add.assert_called_once_with(
            list="BL_morosos", address="10.0.0.7", comment="linkledger - 10.0.0.7"
        )

    def test_blacklist_suspend_already_listed_is_noop(self, routeros):
        routeros.resources("/ip/firewall/address-list").get.return_value = [{"id": "*1", "disabled": "false"}]
        adapter = MikrotikRouterAdapter("192.0.2.1", "api", "pw", api=routeros)

        assert adapter.suspend(account())["changed"] is False
        routeros.resources("/ip/firewall/address-list").add.assert_not_called()

    def test_whitelist_suspend_removes_entry(self, routeros):
        address_list = routeros.resources("/ip/firewall/address-list")
        address_list.get.return_value = [{"id": "*4"}]
        adapter = MikrotikRouterAdapter(
            "192.0.2.1", "api", "pw", api=routeros,
            address_list_name="clientes", address_list_strategy="whitelist",
        )

        adapter.suspend(account())

        address_list.get.assert_called_with(list="WL_clientes", address="10.0.0.7")
        address_list.remove.assert_called_once_with(id="*4")

    def test_queue_limit_suspend_and_restore(self, routeros):
        queues = routeros.resources("/queue/simple")
        queues.get.return_value = [{"id": "*5", "name": "client-7", "max-limit": "10000k/10000k"}]
        adapter = MikrotikRouterAdapter("192.0.2.1", "api", "pw", api=routeros)

        adapter.suspend(account("queue_limit"))
        queues.set.assert_called_once_with(id="*5", **{"max-limit": "1k/1k"})

        queues.get.return_value = [{"id": "*5", "name": "client-7", "max-limit": "1k/1k"}]
        adapter.restore(account("queue_limit"))
        queues.set.assert_called_with(id="*5", **{"max-limit": "10000k/10000k"})

    def test_missing_queue_is_a_command_error(self, routeros):
        adapter = MikrotikRouterAdapter("192.0.2.1", "api", "pw", api=routeros)
        with pytest.raises(NetworkCommandError):
            adapter.set_bandwidth(account("queue_limit"), BandwidthLimits(1, 1))

    def test_pppoe_suspend_disables_secret_and_kills_session(self, routeros):
        routeros.resources("/ppp/secret").get.return_value = [{"id": "*9", "disabled": "false"}]
        routeros.resources("/ppp/active").get.return_value = [{"id": "*a1"}]
        adapter = MikrotikRouterAdapter("192.0.2.1", "api", "pw", api=routeros)

        adapter.suspend(account("pppoe_secret_disable", pppoe_username="jane"))

        routeros.resources("/ppp/secret").set.assert_called_once_with(id="*9", disabled="yes")
        routeros.resources("/ppp/active").remove.assert_called_once_with(id="*a1")

    def test_account_without_ip_is_rejected(self, routeros):
        adapter = MikrotikRouterAdapter("192.0.2.1", "api", "pw", api=routeros)
        with pytest.raises(NetworkCommandError):
            adapter.suspend(account(ip_address=None))

    def test_radius_method_is_not_mikrotik(self, routeros):
        adapter = MikrotikRouterAdapter("192.0.2.1", "api", "pw", api=routeros)
        with pytest.raises(NetworkCommandError):
            adapter.suspend(account("radius"))


# ---------------------------------------------------------------------------
# RADIUS adapter
# ---------------------------------------------------------------------------

class TestRadiusAdapter:
    def _adapter(self, handler):
        client = httpx.Client(base_url="http://radius.test", transport=httpx.MockTransport(handler))
        return RadiusAdapter("http://radius.test", client=client)

    def test_suspend_disables_user_and_drops_session(self):
        seen = []

        def handler(request):
            seen.append((request.method, request.url.path, json.loads(request.content)))
            return httpx.Response(200, json={})

        self._adapter(handler).suspend(account("radius", pppoe_username="jane"))

        assert seen == [
            ("PUT", "/users/jane/status", {"status": "disabled"}),
            ("POST", "/sessions/disconnect", {"username": "jane", "nas_ip_address": "192.0.2.1"}),
        ]

    def test_suspend_without_live_session_succeeds(self):
        def handler(request):
            if request.url.path == "/sessions/disconnect":
                return httpx.Response(404, json={"error": "no active session"})
            return httpx.Response(200, json={})

        adapter = self._adapter(handler)
        first = adapter.suspend(account("radius", pppoe_username="jane"))
        again = adapter.suspend(account("radius", pppoe_username="jane"))

        assert first["status"] == again["status"] == "success"
        assert again["result"] is None

    def test_restore_reapplies_package_speed_in_bps(self):
        seen = []

        def handler(request):
            seen.append((request.url.path, json.loads(request.content)))
            return httpx.Response(204)

        self._adapter(handler).restore(account("radius", pppoe_username="jane"))

        assert seen[-1] == (
            "/users/jane/bandwidth",
            {"upload_limit": 10_000_000, "download_limit": 10_000_000},
        )

    def test_client_error_is_a_command_error(self):
        adapter = self._adapter(lambda request: httpx.Response(404))
        with pytest.raises(NetworkCommandError):
            adapter.suspend(account("radius", pppoe_username="ghost"))

    def test_server_error_stays_retryable(self):
        adapter = self._adapter(lambda request: httpx.Response(503))
        with pytest.raises(httpx.HTTPStatusError):
            adapter.suspend(account("radius", pppoe_username="jane"))

    def test_username_required(self):
        adapter = self._adapter(lambda request: httpx.Response(200))
        with pytest.raises(NetworkCommandError):
            adapter.suspend(account("radius"))


# ---------------------------------------------------------------------------
# RouterService / factory
# ---------------------------------------------------------------------------

class TestRouterService:
    def test_missing_router(self):
        with pytest.raises(RouterConnectionError):
            RouterService("192.0.2.1", None)

    def test_disabled_router(self, make_router):
        router = make_router(is_enabled=False)
        with pytest.raises(RouterConnectionError):
            RouterService(router.host, router, decrypted_password="secret")

    def test_uses_router_address_list_config(self, make_router, routeros):
        router = make_router(address_list_name="cortados", address_list_strategy="blacklist")
        with RouterService(router.host, router, decrypted_password="secret", api=routeros) as rs:
            rs.suspend(account())
            assert rs.adapter.full_list_name == "BL_cortados"
        assert rs.adapter is None


class TestAdapterFactory:
    def test_unknown_method(self, settings):
        with pytest.raises(ValueError):
            get_access_adapter("carrier_pigeon", settings=settings)

    def test_radius_requires_api_url(self, settings):
        with pytest.raises(ValueError):
            get_access_adapter("radius", settings=settings)

    def test_radius_adapter(self, settings):
        configured = settings.model_copy(update={"radius_api_url": "http://radius.test"})
        adapter = get_access_adapter("radius", settings=configured)
        assert isinstance(adapter, RadiusAdapter)
        adapter.disconnect()

    def test_mikrotik_adapter(self, settings):
        adapter = get_access_adapter("queue_limit", host="192.0.2.1", username="api", password="pw", settings=settings)
        assert adapter.vendor == "mikrotik"


# ---------------------------------------------------------------------------
# Connection pool cache
# ---------------------------------------------------------------------------

class TestConnectionPools:
    @pytest.fixture(autouse=True)
    def fake_pools(self, monkeypatch):
        from linkledger.utils.device_clients.mikrotik import connection

        created = []

        def factory(host, **kwargs):
            pool = MagicMock(name=f"pool-{host}")
            created.append((host, kwargs))
            return pool

        monkeypatch.setattr(connection, "RouterOsApiPool", factory)
        connection.clear_all_pools()
        yield connection, created
        connection.clear_all_pools()

    def test_pool_is_reused_per_host_port_and_user(self, fake_pools):
        connection, created = fake_pools
        first = connection.get_pool("192.0.2.1", "api", "pw")
        again = connection.get_pool("192.0.2.1", "api", "pw")
        other_user = connection.get_pool("192.0.2.1", "admin", "pw")

        assert first is again
        assert other_user is not first
        assert len(created) == 2
        assert created[0][1]["use_ssl"] is True
        assert created[0][1]["port"] == 8729

    def test_remove_pool_disconnects_only_that_host(self, fake_pools):
        connection, _ = fake_pools
        doomed = connection.get_pool("192.0.2.1", "api", "pw")
        kept = connection.get_pool("192.0.2.2", "api", "pw")

        connection.remove_pool("192.0.2.1")

        doomed.disconnect.assert_called_once()
        kept.disconnect.assert_not_called()
        assert connection.get_pool("192.0.2.1", "api", "pw") is not doomed

    def test_adapter_drops_pool_after_broken_connection(self, fake_pools, monkeypatch):
        connection, created = fake_pools
        broken_api = MagicMock()
        broken_api.get_resource.side_effect = ConnectionError("connection closed")
        fresh_api = MagicMock()
        fresh_api.get_resource.return_value.get.return_value = []
        apis = iter([broken_api, fresh_api])
        pools = []

        def factory(host, **kwargs):
            pool = MagicMock(name=f"pool-{host}")
            pool.get_api.return_value = next(apis)
            pools.append(pool)
            return pool

        monkeypatch.setattr(connection, "RouterOsApiPool", factory)
        adapter = MikrotikRouterAdapter("192.0.2.1", "api", "pw")

        result = adapter.suspend(account())

        assert result["changed"] is True
        assert len(pools) == 2
        pools[0].disconnect.assert_called_once()
        fresh_api.get_resource.return_value.add.assert_called_once()
