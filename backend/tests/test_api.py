from __future__ import annotations

import json

import pytest
from fastapi.testclient import TestClient

from compliance_engine import main
from compliance_engine.engine import ComplianceAnalysisEngine
from compliance_engine.main import app


@pytest.fixture
def fake_engine(monkeypatch: pytest.MonkeyPatch, scripted_client, tuning):
    def reply(prompt: str) -> str:
        if prompt.startswith("Assess if documents are relevant"):
            return json.dumps({"documents": [{"documentName": "pest.txt", "relevanceScore": 88}]})
        return '{"recommendations":[{"requirementId":"1.02","priority":"high","recommendation":"Define CAPA triggers"}]}'

    client = scripted_client(reply)
    engine = ComplianceAnalysisEngine(client, tuning)
    monkeypatch.setattr(main, "get_analysis_engine", lambda: engine)
    return client


@pytest.fixture
def payload(pest_document) -> dict[str, object]:
    return {
        "checklist": {
            "sections": {
                "Pest control": {
                    "questions": [
                        {"id": "1.01", "text": "Pest control program", "keywords": ["pest control"]},
                        {"id": "1.02", "text": "CAPA trigger thresholds"},
                    ]
                }
            }
        },
        "documents": [{"fileName": pest_document.file_name, "text": pest_document.text}],
        "sub_module_description": "Pest control",
    }


def test_health_endpoint() -> None:
    with TestClient(app) as client:
        response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_analysis_endpoint_returns_full_result(fake_engine, payload) -> None:
    with TestClient(app) as client:
        response = client.post("/analysis", json=payload)

    assert response.status_code == 200
    body = response.json()
    assert body["coverage_map"] == {"1.01": "covered", "1.02": "missing"}
    assert body["overall_score"] == 61
    assert body["recommendations"][0]["recommendation"] == "Define CAPA triggers"
    assert body["diagnostics"]["llm_calls"] == 2
    assert len(fake_engine.prompts) == 2


def test_lightweight_endpoint_returns_scores_only(fake_engine, payload) -> None:
    with TestClient(app) as client:
        response = client.post("/analysis/lightweight", json=payload)

    assert response.status_code == 200
    body = response.json()
    assert body["overall_score"] == 61
    assert body["can_improve"] is True
    assert "coverage_map" not in body


def test_analysis_endpoint_rejects_request_without_documents(fake_engine) -> None:
    with TestClient(app) as client:
        response = client.post("/analysis", json={"checklist": [], "documents": []})

    assert response.status_code == 400
    assert "document" in response.json()["detail"]
    assert fake_engine.prompts == []


def test_analysis_endpoint_validates_document_shape(fake_engine) -> None:
    with TestClient(app) as client:
        response = client.post("/analysis", json={"checklist": [], "documents": [{"text": "missing name"}]})

    assert response.status_code == 422
