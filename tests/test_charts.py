import pytest
import yaml
from stackweave.composition.deferred import DeferredValue
from stackweave.providers.charts import ValuesRenderer
from stackweave.secrets import Secret


def test_renders_values_configmap() -> None:
    manifests = ValuesRenderer().render(
        "../../helm-charts", {"web": {"service": {"type": "LoadBalancer"}}, "kafka": {"enabled": False}}
    )

    assert len(manifests) == 1
    configmap = manifests[0]
    assert configmap["kind"] == "ConfigMap"
    assert configmap["metadata"]["name"] == "helm-charts-values"
    assert yaml.safe_load(configmap["data"]["values.yaml"])["kafka"] == {"enabled": False}


def test_repository_chart_name() -> None:
    manifests = ValuesRenderer().render("https://grafana.github.io/helm-charts/grafana", {})

    assert manifests[0]["metadata"]["name"] == "grafana-values"


def test_unresolved_value_rejected() -> None:
    with pytest.raises(ValueError, match="server.nodeSelector"):
        ValuesRenderer().render(
            "chart", {"server": {"nodeSelector": DeferredValue("pool")}}
        )


def test_unrevealed_secret_rejected() -> None:
    with pytest.raises(ValueError, match="grafana.adminPassword"):
        ValuesRenderer().render("chart", {"grafana": {"adminPassword": Secret("pw")}})


def test_secret_inside_list_reports_index() -> None:
    with pytest.raises(ValueError, match=r"users\[1\]"):
        ValuesRenderer().render("chart", {"users": ["a", Secret("b")]})
