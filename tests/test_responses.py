import copy

from clusterregistry.responses import (
    ClusterList,
    ServiceMetadata,
    ServiceMetadataList,
    new_cluster_list_response,
    new_cluster_response,
    new_service_metadata_list_response,
    new_service_metadata_response,
)


def _cluster(name, services=None):
    spec = {
        "name": name,
        "lastUpdated": "2020-02-14T06:15:32Z",
        "registeredAt": "2019-02-14T06:15:32Z",
        "status": "Active",
        "phase": "Running",
        "tags": {"onboarding": "on", "scaling": "off"},
    }
    if services is not None:
        spec["services"] = services
    return {"spec": spec}


SERVICES = {"svc1": {"cluster1": {"key": "value"}}}


def test_cluster_response_drops_service_metadata():
    cluster = _cluster("cluster1", SERVICES)
    response = new_cluster_response(cluster)
    assert "services" not in response
    assert response["name"] == "cluster1"
    assert response["tags"] == {"onboarding": "on", "scaling": "off"}


def test_cluster_response_leaves_input_untouched():
    cluster = _cluster("cluster1", SERVICES)
    before = copy.deepcopy(cluster)
    new_cluster_response(cluster)
    assert cluster == before


def test_cluster_list_response_fields():
    clusters = [_cluster("cluster1", SERVICES), _cluster("cluster2")]
    result = new_cluster_list_response(clusters, 2, 0, 200, False)
    assert [item["name"] for item in result.items] == ["cluster1", "cluster2"]
    assert all("services" not in item for item in result.items)
    assert result.to_dict() == {
        "items": result.items,
        "itemsCount": 2,
        "offset": 0,
        "limit": 200,
        "more": False,
    }


def test_cluster_list_response_of_nothing_has_empty_items():
    result = new_cluster_list_response(None, 0, 0, 200, False)
    assert result.to_dict()["items"] == []
    assert result == ClusterList(limit=200)


def test_service_metadata_response():
    result = new_service_metadata_response(_cluster("cluster1", SERVICES))
    assert result == ServiceMetadata(name="cluster1", services=SERVICES)
    assert result.to_dict() == {"name": "cluster1", "services": SERVICES}


def test_service_metadata_response_without_services():
    result = new_service_metadata_response(_cluster("cluster2"))
    assert result.to_dict() == {"name": "cluster2", "services": None}


def test_service_metadata_list_response():
    clusters = [_cluster("cluster1", SERVICES), _cluster("cluster2")]
    result = new_service_metadata_list_response(clusters, 2, 5, 10, True)
    data = result.to_dict()
    assert [item["name"] for item in data["items"]] == ["cluster1", "cluster2"]
    assert data["items"][0]["services"] == SERVICES
    assert (data["itemsCount"], data["offset"], data["limit"], data["more"]) == (2, 5, 10, True)


def test_service_metadata_list_of_nothing():
    result = new_service_metadata_list_response([], 0, 0, 200, False)
    assert result == ServiceMetadataList(limit=200)
    assert result.to_dict()["items"] == []