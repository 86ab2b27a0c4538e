import json

from scripts.decode_build import main
from scripts.make_test_tokens import reference_tokens
from talent_planner.codec.build_codec import decode_build, encode_payload
from talent_planner.parser.catalog_parser import parse_catalog


def _catalog_json() -> dict:
    return {
        "schemaVersion": 4,
        "playerTalentModifiers": [{"id": "Bonus", "talentPointModifier": 2}],
        "models": {
            "Player": {
                "id": "Player",
                "archetypes": {
                    "Base": {
                        "id": "Base",
                        "trees": {
                            "T1": {
                                "id": "T1",
                                "talents": {
                                    "A": {"id": "A", "rewards": [{"effects": []}]},
                                    "B": {
                                        "id": "B",
                                        "requiredTalents": ["A"],
                                        "rewards": [{"effects": []}, {"effects": []}],
                                    },
                                },
                            },
                        },
                    },
                },
            },
        },
    }


def _write_catalog(tmp_path):
    path = tmp_path / "talents.json"
    path.write_text(json.dumps(_catalog_json()), encoding="utf-8")
    return path


def _token(**overrides) -> str:
    payload = {"cv": 1, "sv": 4, "m": "Player", "a": "", "t": {"T1": {"A": 1, "B": 2}}}
    payload.update(overrides)
    return encode_payload(payload)


def test_prints_trees_and_points(tmp_path, capsys):
    catalog = _write_catalog(tmp_path)
    assert main([_token(n="Archer"), "--catalog", str(catalog)]) == 0
    out = capsys.readouterr().out
    assert "Model:     Player" in out
    assert "Title:     Archer" in out
    assert "T1 (3 points)" in out
    assert "Warnings" not in out


def test_accepts_share_url(tmp_path, capsys):
    catalog = _write_catalog(tmp_path)
    url = f"https://planner.example/?build={_token()}"
    assert main([url, "--catalog", str(catalog), "--json"]) == 0
    data = json.loads(capsys.readouterr().out)
    assert data["error_code"] == ""
    assert data["build"]["talents"] == {"T1": {"A": 1, "B": 2}}


def test_reports_warnings(tmp_path, capsys):
    catalog = _write_catalog(tmp_path)
    assert main([_token(sv=3, t={"T1": {"B": 1}}), "--catalog", str(catalog)]) == 0
    out = capsys.readouterr().out
    assert "different talent data version" in out
    assert "1 selected talent is missing prerequisites" in out


def test_error_exit_code(tmp_path, capsys):
    catalog = _write_catalog(tmp_path)
    assert main(["not-base64!!!", "--catalog", str(catalog)]) == 1
    assert "Error: corrupted" in capsys.readouterr().out


def test_effects_summary(tmp_path, capsys):
    data = _catalog_json()
    talents = data["models"]["Player"]["archetypes"]["Base"]["trees"]["T1"]["talents"]
    effect = {"rawKey": '(Op=Add,Value="MaxHealth")', "value": 10}
    talents["A"]["rewards"] = [{"effects": [effect]}]
    talents["B"]["rewards"] = [
        {"effects": [dict(effect, value=5)]},
        {"effects": [dict(effect, value=15)]},
    ]
    path = tmp_path / "talents.json"
    path.write_text(json.dumps(data), encoding="utf-8")

    assert main([_token(), "--catalog", str(path), "--effects"]) == 0
    out = capsys.readouterr().out
    assert "Effects:" in out
    assert "MaxHealth" in out and " 25\n" in out

    assert main([_token(), "--catalog", str(path), "--effects", "--json"]) == 0
    [total] = json.loads(capsys.readouterr().out)["effects"]
    assert total == {"modifier_id": "MaxHealth", "total": 25, "occurrences": 2,
                     "talent_ids": ["A", "B"]}


def test_missing_catalog(tmp_path, capsys):
    assert main([_token(), "--catalog", str(tmp_path / "absent.json")]) == 2
    assert "catalog not found" in capsys.readouterr().out


def test_reference_tokens_decode_as_labelled():
    catalog = parse_catalog(_catalog_json())
    for expectation, label, token in reference_tokens(4):
        result = decode_build(token, catalog)
        if expectation == "ok":
            assert result.ok and not result.warnings, label
        elif expectation == "warn":
            assert result.ok and result.warnings, label
        else:
            assert result.error_code, label
