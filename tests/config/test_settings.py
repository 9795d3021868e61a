"""Settings loading: defaults, override files, environment, and module configs built from them."""

from uuid import uuid4

import pytest

from erp_config import get_settings
from erp_config.loader import apply_env_overrides, compute_checksum, merge, parse_settings
from erp_kernel.domain.values import InvoiceControlPolicy
from erp_modules.inventory.config import InventoryConfig
from erp_modules.procurement.config import ProcurementConfig
from erp_modules.sales.config import SalesConfig


@pytest.fixture(autouse=True)
def _no_env(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("ERP_LOG_LEVEL", raising=False)


class TestGetSettings:

    def test_packaged_defaults(self):
        settings = get_settings()
        assert settings.database.url.startswith("sqlite")
        assert settings.retry.lock_contention_retries == 1
        assert settings.policy_for(uuid4()).invoice_control_policy == "RECEIVED"

    def test_override_file_merges(self, tmp_path):
        company = uuid4()
        override = tmp_path / "site.yaml"
        override.write_text(
            "database:\n"
            "  pool_size: 2\n"
            "companies:\n"
            f"  '{company}':\n"
            "    invoice_control_policy: ordered\n"
            "    auto_complete_purchase_orders: false\n"
        )
        settings = get_settings(override)
        assert settings.database.pool_size == 2
        assert settings.database.url.startswith("sqlite")
        policy = settings.policy_for(company)
        assert policy.invoice_control_policy == "ORDERED"
        assert policy.auto_complete_purchase_orders is False

    def test_environment_wins(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://erp@localhost/erp")
        monkeypatch.setenv("ERP_LOG_LEVEL", "debug")
        settings = get_settings()
        assert settings.database.url == "postgresql://erp@localhost/erp"
        assert settings.logging.level == "DEBUG"

    def test_config_trace_logged(self, captured_logs):
        settings = get_settings()
        traces = [r for r in captured_logs() if r["message"] == "ERP_CONFIG_TRACE"]
        assert traces and traces[-1]["checksum"] == settings.checksum


class TestParse:

    def test_unknown_policy_rejected(self):
        with pytest.raises(ValueError, match="ORDERED or RECEIVED"):
            parse_settings({
                "database": {"url": "sqlite://"},
                "companies": {"default": {"invoice_control_policy": "SHIPPED"}},
            })

    def test_database_url_required(self):
        with pytest.raises(ValueError, match="database.url"):
            parse_settings({"database": {}})

    def test_negative_retries_rejected(self):
        with pytest.raises(ValueError):
            parse_settings({"database": {"url": "sqlite://"}, "retry": {"lock_contention_retries": -1}})

    def test_merge_is_recursive(self):
        assert merge({"a": {"b": 1, "c": 2}}, {"a": {"c": 3}}) == {"a": {"b": 1, "c": 3}}

    def test_env_override_leaves_input_untouched(self):
        data = {"database": {"url": "sqlite://"}}
        out = apply_env_overrides(data, {"DATABASE_URL": "postgresql://x"})
        assert data["database"]["url"] == "sqlite://"
        assert out["database"]["url"] == "postgresql://x"

    def test_checksum_is_order_independent(self):
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})


class TestModuleConfigs:

    def test_procurement_config_from_settings(self, tmp_path):
        company = uuid4()
        override = tmp_path / "site.yaml"
        override.write_text(
            f"companies:\n  '{company}':\n    invoice_control_policy: ORDERED\n"
        )
        config = ProcurementConfig.from_settings(get_settings(override))
        policy = config.company_policies[str(company)]
        assert policy.invoice_control_policy is InvoiceControlPolicy.ORDERED
        assert config.policy_for(company) is InvoiceControlPolicy.ORDERED
        assert config.policy_for(uuid4()) is InvoiceControlPolicy.RECEIVED

    def test_procurement_from_dict(self):
        config = ProcurementConfig.from_dict({
            "invoice_control_policy": "ORDERED",
            "company_policies": {"x": {"auto_complete_purchase_orders": False}},
        })
        assert config.invoice_control_policy is InvoiceControlPolicy.ORDERED
        assert config.company_policies["x"].auto_complete_purchase_orders is False

    def test_inventory_config_rejects_unknown_reason(self):
        with pytest.raises(ValueError):
            InventoryConfig.from_dict({"allowed_adjustment_reasons": ["DAMAGE", "BORED"]})

    def test_sales_config_defaults(self):
        assert SalesConfig.with_defaults().auto_process_on_first_shipment is True

    def test_config_init_is_logged(self, captured_logs):
        SalesConfig.from_dict({"lock_contention_retries": 3})
        records = [r for r in captured_logs() if r["message"] == "sales_config_initialized"]
        assert records[-1]["lock_contention_retries"] == 3
        assert records[-1]["level"] == "INFO"
