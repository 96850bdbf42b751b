import pytest

from emission_prover.__main__ import main


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    for name in ("PORT", "PROVING_BACKEND", "STORAGE_QUERIES", "ESTIMATED_EMISSION"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("CIRCUIT_DIR", str(tmp_path / "circuit"))
    monkeypatch.setenv("SRS_DIR", str(tmp_path / "srs"))
    monkeypatch.setenv("OUTPUT_DIR", str(tmp_path / "output"))


def test_prepare_with_reference_backend():
    assert main(["prepare", "--backend", "reference"]) == 0


def test_verifier_needs_ezkl_backend():
    assert main(["verifier", "--backend", "reference"]) == 1


def test_bad_config_exits_nonzero(monkeypatch):
    monkeypatch.setenv("ESTIMATED_EMISSION", "-5")
    assert main(["prepare", "--backend", "reference"]) == 1


def test_unknown_command():
    with pytest.raises(SystemExit):
        main(["deploy"])


def test_serve_refuses_to_start_without_storage_queries(monkeypatch):
    import emission_prover.__main__ as entry

    started = []
    monkeypatch.setattr(entry.uvicorn, "run", lambda *args, **kwargs: started.append(kwargs))

    assert main(["serve", "--backend", "reference"]) == 1
    assert started == []


def test_serve_applies_port_override(monkeypatch):
    import emission_prover.__main__ as entry

    started = []
    monkeypatch.setattr(entry.uvicorn, "run", lambda *args, **kwargs: started.append(kwargs))
    monkeypatch.setenv("STORAGE_QUERIES", "0x1111111111111111111111111111111111111111:0")

    assert main(["serve", "--backend", "reference", "--port", "9191"]) == 0
    assert started[0]["port"] == 9191
