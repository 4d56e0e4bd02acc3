"""Integration tests for all endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from fastapi.testclient import TestClient

from identisnap.app import create_app
from identisnap.core.state import reset_app_state
from tests.factories import (
    create_invalid_base64,
    create_non_image_bytes,
    create_solid_color_image,
    to_base64,
)

if TYPE_CHECKING:
    from pathlib import Path

LONDON = {"lat": "51.5", "lng": "-0.12"}
PARIS = {"lat": "48.85", "lng": "2.35"}


def ingest(client: TestClient, location: dict[str, str], *images: bytes):
    return client.post(
        "/locations",
        json={"location": location, "images": [to_base64(image) for image in images]},
    )


@pytest.mark.integration
class TestHealthEndpoint:
    """Integration tests for /health."""

    def test_health_returns_healthy(self, client: TestClient) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["uptime_seconds"] >= 0


@pytest.mark.integration
class TestInfoEndpoint:
    """Integration tests for /info."""

    def test_info_returns_algorithm_config(self, client: TestClient) -> None:
        response = client.get("/info")

        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "identisnap"
        assert data["algorithm"]["feature_detector"] == "SIFT"
        assert data["algorithm"]["descriptor_normalization"] == "RootSIFT"
        assert data["algorithm"]["ratio_threshold"] == 0.8
        assert data["locations"] == 0


@pytest.mark.integration
class TestLocationsEndpoints:
    """Integration tests for /locations."""

    def test_empty_catalog(self, client: TestClient) -> None:
        response = client.get("/locations")

        assert response.status_code == 200
        assert response.json() == {"entries": [], "next_start_bin": 0}

    def test_ingest_allocates_bins(self, client: TestClient, scene_a, scene_c) -> None:
        response = ingest(client, LONDON, scene_a, scene_c)

        assert response.status_code == 201
        data = response.json()
        assert data["location"] == LONDON
        assert data["image_count"] == 2
        assert data["start_bin"] == 0
        assert data["end_bin"] == data["descriptor_count"] - 1

        listing = client.get("/locations").json()
        assert listing["entries"] == [
            {"location": LONDON, "start_bin": 0, "end_bin": data["end_bin"]}
        ]
        assert listing["next_start_bin"] == data["descriptor_count"]

    def test_second_location_continues_bins(self, client: TestClient, scene_a, scene_b) -> None:
        first = ingest(client, LONDON, scene_a).json()
        second = ingest(client, PARIS, scene_b).json()

        assert second["start_bin"] == first["end_bin"] + 1
        assert client.get("/info").json()["locations"] == 2

    def test_undecodable_image_leaves_nothing_behind(
        self, client: TestClient, configured_env: Path, scene_a
    ) -> None:
        response = client.post(
            "/locations",
            json={
                "location": LONDON,
                "images": [to_base64(scene_a), to_base64(create_non_image_bytes())],
            },
        )

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_image"
        assert client.get("/locations").json()["entries"] == []
        assert not (configured_env.parent / "indexes").exists()

    def test_featureless_batch_rejected(self, client: TestClient) -> None:
        response = ingest(client, LONDON, create_solid_color_image())

        assert response.status_code == 422
        assert response.json()["error"] == "ingestion_failed"
        assert client.get("/locations").json()["entries"] == []

    def test_invalid_base64(self, client: TestClient) -> None:
        response = client.post(
            "/locations",
            json={"location": LONDON, "images": [create_invalid_base64()]},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "decode_error"

    def test_invalid_location(self, client: TestClient, scene_a) -> None:
        response = ingest(client, {"lat": "north", "lng": "-0.12"}, scene_a)

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_location"

    def test_empty_image_list_is_validation_error(self, client: TestClient) -> None:
        response = client.post("/locations", json={"location": LONDON, "images": []})

        assert response.status_code == 422

    def test_query_location(self, client: TestClient, scene_a, scene_a_warped, scene_c) -> None:
        ingest(client, LONDON, scene_a, scene_c)

        response = client.post(
            "/locations/51.5,-0.12/query",
            json={"image": to_base64(scene_a_warped), "query_id": "q1"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["location"] == LONDON
        assert data["query_id"] == "q1"
        assert data["confidence"] >= 20

    def test_query_unknown_location(self, client: TestClient, scene_a) -> None:
        response = client.post(
            "/locations/10.0,10.0/query",
            json={"image": to_base64(scene_a)},
        )

        assert response.status_code == 404
        assert response.json()["error"] == "location_not_found"

    def test_query_malformed_location(self, client: TestClient, scene_a) -> None:
        response = client.post("/locations/nowhere/query", json={"image": to_base64(scene_a)})

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_location"

    def test_reingested_location_is_reloaded(
        self, client: TestClient, scene_a, scene_a_warped, scene_b
    ) -> None:
        """A query after re-ingestion sees the new index, not a cached one."""
        ingest(client, LONDON, scene_b)
        before = client.post(
            "/locations/51.5,-0.12/query", json={"image": to_base64(scene_a_warped)}
        ).json()["confidence"]

        ingest(client, LONDON, scene_a)
        after = client.post(
            "/locations/51.5,-0.12/query", json={"image": to_base64(scene_a_warped)}
        ).json()["confidence"]

        assert after > before
        assert len(client.get("/locations").json()["entries"]) == 2


@pytest.mark.integration
class TestLocateEndpoint:
    """Integration tests for /locate."""

    def test_locate_empty_catalog(self, client: TestClient, scene_a) -> None:
        response = client.post("/locate", json={"image": to_base64(scene_a)})

        assert response.status_code == 200
        assert response.json()["best"] is None
        assert response.json()["scores"] == []

    def test_locate_picks_the_right_location(
        self, client: TestClient, scene_a, scene_a_warped, scene_b
    ) -> None:
        ingest(client, PARIS, scene_b)
        ingest(client, LONDON, scene_a)

        response = client.post("/locate", json={"image": to_base64(scene_a_warped)})

        assert response.status_code == 200
        data = response.json()
        assert data["best"]["location"] == LONDON
        assert [s["location"] for s in data["scores"]] == [LONDON, PARIS]


@pytest.mark.integration
class TestMalformedLedger:
    """The service keeps working over a ledger with unparseable lines."""

    def test_catalog_survives_malformed_lines(
        self, configured_env: Path, scene_a, scene_a_warped, scene_b
    ) -> None:
        ledger_path = configured_env.parent / "bins.txt"
        ledger_path.write_text("oops\n")

        with TestClient(create_app()) as client:
            assert client.get("/health").status_code == 200
            assert client.get("/locations").json() == {"entries": [], "next_start_bin": 0}

            assert ingest(client, LONDON, scene_a).status_code == 201
            with ledger_path.open("a") as f:
                f.write("garbage line\n")
            assert ingest(client, PARIS, scene_b).status_code == 201

            listing = client.get("/locations").json()
            located = client.post("/locate", json={"image": to_base64(scene_a_warped)})
            queried = client.post(
                "/locations/51.5,-0.12/query", json={"image": to_base64(scene_a_warped)}
            )
        reset_app_state()

        assert [e["location"] for e in listing["entries"]] == [LONDON, PARIS]
        assert located.status_code == 200
        assert located.json()["best"]["location"] == LONDON
        assert queried.status_code == 200
        assert queried.json()["confidence"] > 0


@pytest.mark.integration
class TestMatchEndpoint:
    """Integration tests for /match."""

    def test_match_warped_view(self, client: TestClient, scene_a, scene_a_warped) -> None:
        response = client.post(
            "/match",
            json={
                "query_image": to_base64(scene_a_warped),
                "reference_image": to_base64(scene_a),
                "query_id": "q",
                "reference_id": "r",
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert data["is_match"] is True
        assert data["inliers"] >= 20
        assert len(data["homography"]) == 3
        assert data["reference_id"] == "r"

    def test_match_invalid_image(self, client: TestClient, scene_a) -> None:
        response = client.post(
            "/match",
            json={
                "query_image": to_base64(create_non_image_bytes()),
                "reference_image": to_base64(scene_a),
            },
        )

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_image"

    def test_batch_match(self, client: TestClient, scene_a, scene_a_warped, scene_b) -> None:
        response = client.post(
            "/match/batch",
            json={
                "query_image": to_base64(scene_a_warped),
                "references": [
                    {"reference_id": "b", "reference_image": to_base64(scene_b)},
                    {"reference_id": "a", "reference_image": to_base64(scene_a)},
                ],
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert [r["reference_id"] for r in data["results"]] == ["b", "a"]
        assert data["best_match"] == "a"
        assert data["results"][1]["is_match"] is True

    def test_batch_match_requires_references(self, client: TestClient, scene_a) -> None:
        response = client.post(
            "/match/batch",
            json={"query_image": to_base64(scene_a), "references": []},
        )

        assert response.status_code == 422
