"""
Tests for registry operations — mutation pipeline and entity CRUD.
"""

import json

import pytest

from src.core.config.loader import Settings
from src.core.persistence.registry_file import load_registry, save_registry
from src.core.services import registry_ops
from src.core.services.registry_validate import RegistryValidationError


@pytest.fixture
def seeded(settings: Settings, registry) -> Settings:
    """Settings whose registry file holds the shared sample registry."""
    save_registry(registry, settings.registry_path)
    return settings


def _stored(settings: Settings):
    return load_registry(settings.registry_path)


# ═══════════════════════════════════════════════════════════════════
#  Pipeline
# ═══════════════════════════════════════════════════════════════════


class TestMutate:
    def test_success_saves_and_pushes(self, seeded, fake_client):
        def change(registry):
            registry.base_domain = "example.org"
            return registry.base_domain

        result = registry_ops.mutate(seeded, change, key="baseDomain", client=fake_client)

        assert result.success is True
        assert result.applied is True
        assert _stored(seeded).base_domain == "example.org"

        pushed = fake_client.push.call_args.args[0]
        routes = pushed["apps"]["http"]["servers"]["edge"]["routes"]
        assert routes[0]["match"] == [{"host": ["proxy.example.org"]}]
        fake_client.confirm.assert_called_once()

    def test_validation_error_writes_nothing(self, seeded, fake_client):
        before = seeded.registry_path.read_text()

        def change(registry):
            raise RegistryValidationError("nope")

        result = registry_ops.mutate(seeded, change, client=fake_client)

        assert result.to_dict() == {"success": False, "error": "nope"}
        assert seeded.registry_path.read_text() == before
        fake_client.push.assert_not_called()

    def test_invariant_violation_rejected(self, seeded, fake_client):
        def change(registry):
            registry.hosts[0].subdomain = "shop"  # collides with the app frontend
            return registry.hosts[0]

        result = registry_ops.mutate(seeded, change, client=fake_client)
        assert result.success is False
        assert "shop.example.com" in result.error

    def test_push_failure_keeps_saved_change(self, seeded, failing_client):
        result = registry_ops.update_base_domain(seeded, "example.org", client=failing_client)

        assert result["success"] is True
        assert result["applied"] is False
        assert "unreachable" in result["applyError"]
        assert _stored(seeded).base_domain == "example.org"
        failing_client.confirm.assert_not_called()

    def test_concurrent_change_rejected(self, seeded, fake_client):
        def change(registry):
            other = load_registry(seeded.registry_path)
            save_registry(other, seeded.registry_path)  # someone else saved meanwhile
            registry.base_domain = "example.org"
            return registry.base_domain

        result = registry_ops.mutate(seeded, change, client=fake_client)
        assert result.success is False
        assert "modified concurrently" in result.error
        assert _stored(seeded).base_domain == "example.com"

    def test_corrupt_registry_reported(self, settings, fake_client):
        settings.registry_path.write_text("{{{")
        result = registry_ops.get_hosts(settings)
        assert result["success"] is False
        assert "Corrupt" in result["error"]

    def test_not_converged_reported(self, seeded, fake_client):
        fake_client.confirm.return_value = False
        result = registry_ops.update_base_domain(seeded, "example.org", client=fake_client)
        assert result["applied"] is True
        assert result["converged"] is False

    def test_confirm_skipped_when_disabled(self, seeded, fake_client):
        settings = seeded.model_copy(update={"confirm_push": False})
        registry_ops.update_base_domain(settings, "example.org", client=fake_client)
        fake_client.confirm.assert_not_called()


# ═══════════════════════════════════════════════════════════════════
#  Base domain
# ═══════════════════════════════════════════════════════════════════


class TestBaseDomain:
    def test_get(self, seeded):
        assert registry_ops.get_config(seeded) == {
            "success": True, "config": {"baseDomain": "example.com"},
        }

    def test_lower_cased(self, seeded, fake_client):
        result = registry_ops.update_base_domain(seeded, "Example.ORG", client=fake_client)
        assert result["baseDomain"] == "example.org"

    @pytest.mark.parametrize("value, error", [
        ("", "Invalid base domain"),
        (None, "Invalid base domain"),
        ("not a domain", "Invalid domain format"),
        ("localhost", "Invalid domain format"),
    ])
    def test_invalid(self, seeded, fake_client, value, error):
        result = registry_ops.update_base_domain(seeded, value, client=fake_client)
        assert result == {"success": False, "error": error}

    def test_refreshes_wildcards_when_enabled(self, token_settings, fake_client, registry):
        registry.cloudflare.enabled = True
        save_registry(registry, token_settings.registry_path)

        registry_ops.update_base_domain(token_settings, "example.org", client=fake_client)
        assert "*.example.org" in _stored(token_settings).cloudflare.wildcard_domains


# ═══════════════════════════════════════════════════════════════════
#  Hosts
# ═══════════════════════════════════════════════════════════════════


class TestHosts:
    def test_add(self, seeded, fake_client):
        result = registry_ops.add_host(seeded, {
            "subdomain": "NAS", "targetHost": "192.168.1.20", "targetPort": "5000",
            "localOnly": True,
        }, client=fake_client)

        assert result["success"] is True
        host = result["host"]
        assert host["subdomain"] == "nas"
        assert host["targetPort"] == 5000
        assert host["localOnly"] is True
        assert host["enabled"] is True
        assert len(_stored(seeded).hosts) == 2

    @pytest.mark.parametrize("data, error", [
        ({"subdomain": "x"}, "Target host and port are required"),
        ({"targetHost": "h", "targetPort": 80}, "Subdomain or custom domain is required"),
        ({"subdomain": "x", "targetHost": "h", "targetPort": 70000}, "Invalid port number"),
        ({"subdomain": "x", "targetHost": "h", "targetPort": "abc"}, "Invalid port number"),
        ({"subdomain": "proxy", "targetHost": "h", "targetPort": 80}, "reserved"),
        ({"subdomain": "a", "customDomain": "b.net", "targetHost": "h", "targetPort": 80},
         "not both"),
    ])
    def test_add_invalid(self, seeded, fake_client, data, error):
        result = registry_ops.add_host(seeded, data, client=fake_client)
        assert result["success"] is False
        assert error in result["error"]

    def test_add_duplicate_domain(self, seeded, fake_client):
        result = registry_ops.add_host(seeded, {
            "subdomain": "www", "targetHost": "h", "targetPort": 80,
        }, client=fake_client)
        assert result == {
            "success": False,
            "error": "Domain www.example.com is already in use (2 routes)",
        }

    def test_custom_domain_without_base(self, settings, fake_client):
        result = registry_ops.add_host(settings, {
            "customDomain": "nas.other.net", "targetHost": "h", "targetPort": 80,
        }, client=fake_client)
        assert result["success"] is True

    def test_subdomain_without_base_is_stored_unrouted(self, settings, fake_client):
        result = registry_ops.add_host(settings, {
            "subdomain": "nas", "targetHost": "h", "targetPort": 80,
        }, client=fake_client)

        assert result["success"] is True
        pushed = fake_client.push.call_args.args[0]
        assert pushed["apps"]["http"]["servers"]["edge"]["routes"] == []

    def test_update_to_subdomain_without_base(self, settings, fake_client):
        host_id = registry_ops.add_host(settings, {
            "customDomain": "nas.other.net", "targetHost": "h", "targetPort": 80,
        }, client=fake_client)["host"]["id"]

        result = registry_ops.update_host(
            settings, host_id, {"subdomain": "nas"}, client=fake_client,
        )
        assert result["success"] is True
        assert result["host"]["subdomain"] == "nas"
        assert result["host"]["customDomain"] is None

    def test_update_allowed_fields(self, seeded, fake_client):
        result = registry_ops.update_host(seeded, "h1", {
            "targetPort": 9090, "requireAuth": True, "createdAt": "ignored",
        }, client=fake_client)

        assert result["host"]["targetPort"] == 9090
        assert result["host"]["requireAuth"] is True
        assert result["host"]["createdAt"] != "ignored"

    def test_update_switches_to_custom_domain(self, seeded, fake_client):
        result = registry_ops.update_host(
            seeded, "h1", {"customDomain": "www.other.net"}, client=fake_client,
        )
        assert result["host"]["customDomain"] == "www.other.net"
        assert result["host"]["subdomain"] is None

    def test_update_missing(self, seeded, fake_client):
        result = registry_ops.update_host(seeded, "nope", {}, client=fake_client)
        assert result == {"success": False, "error": "Host not found"}

    def test_toggle(self, seeded, fake_client):
        result = registry_ops.toggle_host(seeded, "h1", False, client=fake_client)
        assert result["host"]["enabled"] is False

        pushed = fake_client.push.call_args.args[0]
        ids = [r["@id"] for r in pushed["apps"]["http"]["servers"]["edge"]["routes"]]
        assert "h1" not in ids

    def test_delete(self, seeded, fake_client):
        result = registry_ops.delete_host(seeded, "h1", client=fake_client)
        assert result["success"] is True
        assert result["message"] == "Host deleted"
        assert _stored(seeded).hosts == []


# ═══════════════════════════════════════════════════════════════════
#  Environments
# ═══════════════════════════════════════════════════════════════════


class TestEnvironments:
    def test_add_derives_id(self, seeded, fake_client):
        result = registry_ops.add_environment(seeded, {
            "name": "Staging EU", "prefix": "stg", "apiPrefix": "api.stg",
        }, client=fake_client)

        env = result["environment"]
        assert env["id"] == "staging-eu"
        assert env["isDefault"] is False

    def test_add_duplicate(self, seeded, fake_client):
        result = registry_ops.add_environment(seeded, {
            "name": "Dev", "prefix": "dev2", "apiPrefix": "api.dev2",
        }, client=fake_client)
        assert result["success"] is False

    def test_add_requires_api_prefix(self, seeded, fake_client):
        result = registry_ops.add_environment(seeded, {
            "name": "QA", "prefix": "qa", "apiPrefix": "",
        }, client=fake_client)
        assert result == {"success": False, "error": "apiPrefix is required"}

    def test_set_default_unsets_others(self, seeded, fake_client):
        registry_ops.update_environment(seeded, "dev", {"isDefault": True}, client=fake_client)
        stored = _stored(seeded)
        assert [e.id for e in stored.environments if e.is_default] == ["dev"]

    def test_update_prefix_moves_routes(self, seeded, fake_client):
        registry_ops.update_environment(seeded, "dev", {"prefix": "staging"}, client=fake_client)

        pushed = fake_client.push.call_args.args[0]
        hosts = [r["match"][0]["host"][0] for r in pushed["apps"]["http"]["servers"]["edge"]["routes"]]
        assert "shop.staging.example.com" in hosts
        assert "shop.dev.example.com" not in hosts

    def test_delete_blocked_while_referenced(self, seeded, fake_client):
        result = registry_ops.delete_environment(seeded, "dev", client=fake_client)
        assert result == {
            "success": False,
            "error": "Cannot delete: 1 application(s) use this environment",
            "references": 1,
        }
        assert _stored(seeded).get_environment("dev") is not None
        fake_client.push.assert_not_called()

    def test_delete_unreferenced(self, seeded, fake_client):
        registry_ops.add_environment(seeded, {
            "name": "QA", "prefix": "qa", "apiPrefix": "api.qa",
        }, client=fake_client)
        result = registry_ops.delete_environment(seeded, "qa", client=fake_client)
        assert result["success"] is True
        assert _stored(seeded).get_environment("qa") is None

    def test_delete_missing(self, seeded, fake_client):
        result = registry_ops.delete_environment(seeded, "nope", client=fake_client)
        assert result == {"success": False, "error": "Environment not found"}


# ═══════════════════════════════════════════════════════════════════
#  Applications
# ═══════════════════════════════════════════════════════════════════


class TestApplications:
    def _payload(self, **overrides) -> dict:
        data = {
            "name": "Blog",
            "slug": "Blog",
            "endpoints": {
                "prod": {
                    "frontend": {"targetHost": "10.0.0.7", "targetPort": 4000},
                    "apis": [
                        {"slug": "", "targetHost": "10.0.0.7", "targetPort": 4001},
                        {"slug": "Admin!", "targetHost": "10.0.0.7", "targetPort": 4002},
                    ],
                },
                "staging": {"frontend": {"targetHost": "x", "targetPort": 1}},
            },
        }
        data.update(overrides)
        return data

    def test_add(self, seeded, fake_client):
        result = registry_ops.add_application(seeded, self._payload(), client=fake_client)

        app = result["application"]
        assert app["slug"] == "blog"
        assert list(app["endpoints"]) == ["prod"]  # unknown environment skipped
        assert [a["slug"] for a in app["endpoints"]["prod"]["apis"]] == ["", "admin"]

        pushed = fake_client.push.call_args.args[0]
        hosts = [r["match"][0]["host"][0] for r in pushed["apps"]["http"]["servers"]["edge"]["routes"]]
        assert "blog-admin.api.example.com" in hosts

    def test_legacy_single_api_payload(self, seeded, fake_client):
        payload = self._payload(endpoints={
            "prod": {"api": {"targetHost": "h", "targetPort": 8000}},
        })
        result = registry_ops.add_application(seeded, payload, client=fake_client)
        assert result["application"]["endpoints"]["prod"]["apis"][0]["slug"] == ""

    @pytest.mark.parametrize("overrides, error", [
        ({"name": ""}, "Name and slug are required"),
        ({"slug": "bad slug"}, "Invalid slug format"),
        ({"slug": "shop"}, "Application with this slug already exists"),
        ({"endpoints": {}}, "At least one environment endpoint is required"),
        ({"endpoints": {"staging": {"frontend": {"targetHost": "h", "targetPort": 1}}}},
         "No valid environment endpoints provided"),
        ({"endpoints": {"prod": {"frontend": None, "apis": []}}},
         "At least one endpoint is required for environment prod"),
        ({"endpoints": {"prod": {"frontend": {"targetHost": "h", "targetPort": 0}}}},
         "Invalid environment prod port number"),
    ])
    def test_add_invalid(self, seeded, fake_client, overrides, error):
        result = registry_ops.add_application(seeded, self._payload(**overrides), client=fake_client)
        assert result == {"success": False, "error": error}

    def test_add_duplicate_api_slug(self, seeded, fake_client):
        payload = self._payload(endpoints={"prod": {"apis": [
            {"slug": "x", "targetHost": "h", "targetPort": 1},
            {"slug": "X", "targetHost": "h", "targetPort": 2},
        ]}})
        result = registry_ops.add_application(seeded, payload, client=fake_client)
        assert result["success"] is False

    @pytest.mark.parametrize("legacy", ["localhost:3001", ["h", 80], 3001])
    def test_legacy_api_must_be_object(self, seeded, fake_client, legacy):
        payload = self._payload(endpoints={"prod": {"api": legacy}})
        result = registry_ops.add_application(seeded, payload, client=fake_client)
        assert result == {"success": False, "error": "Invalid API endpoint for environment prod"}
        fake_client.push.assert_not_called()

    def test_add_without_base_domain_is_stored_unrouted(self, settings, fake_client):
        result = registry_ops.add_application(settings, self._payload(), client=fake_client)

        assert result["success"] is True
        assert [a.slug for a in _stored(settings).applications] == ["blog"]
        pushed = fake_client.push.call_args.args[0]
        assert pushed["apps"]["http"]["servers"]["edge"]["routes"] == []

    def test_update_merges_endpoints(self, seeded, fake_client):
        result = registry_ops.update_application(seeded, "app1", {
            "endpoints": {"prod": {"frontend": {"targetHost": "10.0.0.9", "targetPort": 3000}}},
        }, client=fake_client)

        prod = result["application"]["endpoints"]["prod"]
        assert prod["frontend"]["targetHost"] == "10.0.0.9"
        assert prod["apis"][0]["targetPort"] == 3001  # untouched

    def test_update_null_removes_environment(self, seeded, fake_client):
        result = registry_ops.update_application(
            seeded, "app1", {"endpoints": {"dev": None}}, client=fake_client,
        )
        assert list(result["application"]["endpoints"]) == ["prod"]

        # dev is now unreferenced and can be deleted
        assert registry_ops.delete_environment(seeded, "dev", client=fake_client)["success"]

    def test_update_slug_conflict(self, seeded, fake_client):
        registry_ops.add_application(seeded, self._payload(), client=fake_client)
        result = registry_ops.update_application(seeded, "app1", {"slug": "blog"}, client=fake_client)
        assert result == {"success": False, "error": "Application with this slug already exists"}

    def test_toggle(self, seeded, fake_client):
        result = registry_ops.toggle_application(seeded, "app1", False, client=fake_client)
        assert result["application"]["enabled"] is False

    def test_delete(self, seeded, fake_client):
        result = registry_ops.delete_application(seeded, "app1", client=fake_client)
        assert result["message"] == "Application deleted"
        assert _stored(seeded).applications == []

    def test_delete_missing(self, seeded, fake_client):
        result = registry_ops.delete_application(seeded, "nope", client=fake_client)
        assert result == {"success": False, "error": "Application not found"}


# ═══════════════════════════════════════════════════════════════════
#  Wildcard TLS provider
# ═══════════════════════════════════════════════════════════════════


class TestCloudflare:
    def test_get_reports_token_presence(self, seeded):
        result = registry_ops.get_cloudflare(seeded)
        assert result["cloudflare"]["enabled"] is False
        assert result["cloudflare"]["tokenConfigured"] is False
        assert result["cloudflare"]["tokenEnv"] == "CF_API_TOKEN"

    def test_enable_without_token(self, seeded, fake_client):
        result = registry_ops.update_cloudflare(seeded, {"enabled": True}, client=fake_client)
        assert result["success"] is False
        assert "CF_API_TOKEN" in result["error"]

    def test_enable_derives_wildcards(self, token_settings, registry, fake_client):
        save_registry(registry, token_settings.registry_path)

        result = registry_ops.update_cloudflare(
            token_settings, {"enabled": True}, client=fake_client,
        )
        assert result["success"] is True
        assert "*.example.com" in result["cloudflare"]["wildcardDomains"]

        pushed = fake_client.push.call_args.args[0]
        assert pushed["apps"]["tls"]["certificates"]["automate"] == (
            result["cloudflare"]["wildcardDomains"]
        )
        assert "cf-secret" not in json.dumps(pushed)

    def test_new_environment_extends_wildcards(self, token_settings, registry, fake_client):
        registry.cloudflare.enabled = True
        save_registry(registry, token_settings.registry_path)

        registry_ops.add_environment(token_settings, {
            "name": "QA", "prefix": "qa", "apiPrefix": "api.qa",
        }, client=fake_client)
        wildcards = _stored(token_settings).cloudflare.wildcard_domains
        assert "*.qa.example.com" in wildcards
        assert "*.api.qa.example.com" in wildcards

    def test_disable_clears_wildcards(self, token_settings, registry, fake_client):
        registry.cloudflare.enabled = True
        save_registry(registry, token_settings.registry_path)

        result = registry_ops.update_cloudflare(
            token_settings, {"enabled": False}, client=fake_client,
        )
        assert result["cloudflare"]["wildcardDomains"] == []

    def test_enabled_must_be_boolean(self, seeded, fake_client):
        result = registry_ops.update_cloudflare(seeded, {"enabled": "yes"}, client=fake_client)
        assert result["success"] is False


# ═══════════════════════════════════════════════════════════════════
#  Proxy & certificates
# ═══════════════════════════════════════════════════════════════════


class TestProxyOperations:
    def test_reload(self, seeded, fake_client):
        result = registry_ops.reload_proxy(seeded, client=fake_client)
        assert result["success"] is True
        assert result["apply"]["routes"] == 6
        assert result["apply"]["tlsStrategy"] == "per_host"

    def test_reload_failure(self, seeded, failing_client):
        result = registry_ops.reload_proxy(seeded, client=failing_client)
        assert result["success"] is False
        assert "unreachable" in result["error"]

    def test_renew_certificates(self, seeded, fake_client):
        result = registry_ops.renew_certificates(seeded, client=fake_client)
        assert result["success"] is True
        assert result["message"] == "Certificate renewal triggered"
        assert result["apply"]["tlsStrategy"] == "per_host"

        pushed = fake_client.push.call_args.args[0]
        subjects = pushed["apps"]["tls"]["automation"]["policies"][0]["subjects"]
        assert "www.example.com" in subjects

    def test_renew_certificates_failure(self, seeded, failing_client):
        result = registry_ops.renew_certificates(seeded, client=failing_client)
        assert result["success"] is False
        assert "unreachable" in result["error"]

    def test_status(self, seeded, fake_client):
        result = registry_ops.proxy_status(seeded, client=fake_client)
        assert result["proxy"]["reachable"] is True

    def test_system_route(self, seeded):
        assert registry_ops.system_route_status(seeded) == {
            "success": True,
            "configured": True,
            "domain": "proxy.example.com",
            "upstream": "localhost:4000",
        }

    def test_system_route_without_base(self, settings):
        assert registry_ops.system_route_status(settings)["configured"] is False

    def test_compiled_preview_does_not_push(self, seeded):
        result = registry_ops.compiled_preview(seeded)
        assert [r["id"] for r in result["routes"]][:2] == ["system-dashboard", "system-auth"]
        assert "apps" in result["config"]
