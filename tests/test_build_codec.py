"""Tests for share-token encoding and decoding."""

import base64
import json

import pytest

from talent_planner.codec.base64url import decode_base64url, encode_base64url
from talent_planner.codec.build_codec import (
    ERROR_CORRUPTED,
    ERROR_INCOMPLETE,
    ERROR_INVALID_MODEL,
    WARNING_MISSING_PREREQUISITES,
    WARNING_OUTDATED_FORMAT,
    WARNING_SCHEMA_MISMATCH,
    WARNING_SUBSTITUTED_ARCHETYPE,
    ShareMetadata,
    create_share_payload,
    decode_build,
    decode_build_from_query,
    encode_build,
    encode_payload,
    normalize_share_metadata,
)
from talent_planner.engine.build_config import BuildConfig
from talent_planner.models.talent import (
    Archetype,
    PointModifier,
    RewardTier,
    Talent,
    TalentCatalog,
    TalentModel,
    Tree,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _talent(
    talent_id: str,
    requires: list[str] | None = None,
    tiers: int = 1,
    required_rank: str | None = None,
    default_unlocked: bool = False,
) -> Talent:
    return Talent(
        id=talent_id,
        tree_id="",
        rewards=[RewardTier() for _ in range(tiers)],
        required_rank=required_rank,
        required_talents=list(requires or []),
        size=(64, 64),
        default_unlocked=default_unlocked,
    )


def _archetype(archetype_id: str, model_id: str, tree_id: str, *talents: Talent) -> Archetype:
    for talent in talents:
        talent.tree_id = tree_id
    tree = Tree(id=tree_id, archetype_id=archetype_id, talents={t.id: t for t in talents})
    return Archetype(id=archetype_id, model_id=model_id, trees={tree_id: tree})


def _catalog(schema_version: int | None = 4) -> TalentCatalog:
    player = TalentModel(id="Player", archetypes={
        "Base": _archetype(
            "Base", "Player", "T1",
            _talent("A"),
            _talent("B", ["A"], tiers=2),
            _talent("D", required_rank="Apprentice"),
        ),
        "Solo": _archetype("Solo", "Player", "S1", _talent("SA", tiers=3)),
    })
    creature = TalentModel(id="Creature", archetypes={
        "Horse": _archetype(
            "Horse", "Creature", "Creature_Horse",
            _talent("O", default_unlocked=True),
            _talent("X", ["O"], tiers=5),
        ),
        "Cat": _archetype(
            "Cat", "Creature", "Creature_Cat",
            _talent("CombatPet_Root", default_unlocked=True),
            _talent("CombatPet_Claw", ["CombatPet_Root"], tiers=5),
        ),
    })
    return TalentCatalog(
        schema_version=schema_version,
        models={"Player": player, "Creature": creature},
        player_modifiers=[PointModifier("Bonus", 2)],
    )


def _payload(**overrides) -> dict:
    payload = {"cv": 1, "sv": 4, "m": "Player", "a": "", "t": {}}
    payload.update(overrides)
    return payload


def _codes(result) -> list[str]:
    return [w.code for w in result.warnings]


# ===========================================================================
# base64url
# ===========================================================================


class TestBase64Url:
    def test_no_padding_and_url_alphabet(self):
        token = encode_base64url("??>>~~")
        assert "=" not in token
        assert "+" not in token and "/" not in token
        assert decode_base64url(token) == "??>>~~"

    def test_accepts_trailing_padding(self):
        token = encode_base64url("ab")
        assert decode_base64url(token + "==") == "ab"

    def test_invalid_raises_value_error(self):
        with pytest.raises(ValueError):
            decode_base64url("not-base64!!!")
        with pytest.raises(ValueError):
            decode_base64url("A")

    def test_non_utf8_raises_value_error(self):
        token = base64.urlsafe_b64encode(b"\xff\xfe").decode("ascii").rstrip("=")
        with pytest.raises(ValueError):
            decode_base64url(token)


# ===========================================================================
# Encoding
# ===========================================================================


class TestEncode:
    def test_reference_payload_bytes(self):
        token = encode_payload(_payload())
        expected = base64.urlsafe_b64encode(
            b'{"cv":1,"sv":4,"m":"Player","a":"","t":{}}'
        ).decode("ascii").rstrip("=")
        assert token == expected

    def test_player_payload_has_modifiers(self):
        payload = create_share_payload(
            {"T1": {"A": 1}}, "Player", modifier_ids=["Bonus", "Nope"], catalog=_catalog()
        )
        assert payload == {
            "cv": 1, "sv": 4, "m": "Player", "a": "", "t": {"T1": {"A": 1}}, "pm": ["Bonus"],
        }

    def test_creature_payload_is_scoped(self):
        payload = create_share_payload(
            {"Creature_Horse": {"X": 2}, "Creature_Cat": {"CombatPet_Claw": 1}},
            "Creature",
            "Horse",
            modifier_ids=["Bonus"],
            catalog=_catalog(),
        )
        assert "pm" not in payload
        assert payload["a"] == "Horse"
        assert payload["t"] == {"Creature_Horse": {"O": 1, "X": 2}}

    def test_metadata_written_only_when_present(self):
        catalog = _catalog()
        bare = create_share_payload({}, "Player", catalog=catalog)
        assert "n" not in bare and "d" not in bare

        blank = create_share_payload(
            {}, "Player", metadata=ShareMetadata("  ", ""), catalog=catalog
        )
        assert "n" not in blank

        named = create_share_payload(
            {}, "Player", metadata=ShareMetadata(" Tank ", ""), catalog=catalog
        )
        assert named["n"] == "Tank"
        assert named["d"] == ""

    def test_equal_selections_encode_equally(self):
        catalog = _catalog()
        first = encode_build({"S1": {"SA": 1}, "T1": {"B": 2, "A": 1}}, "Player", catalog=catalog)
        second = encode_build({"T1": {"A": 1, "B": 2}, "S1": {"SA": 1}}, "Player", catalog=catalog)
        assert first == second

    def test_schema_version_override(self):
        payload = create_share_payload({}, "Player", catalog=_catalog(), schema_version=9)
        assert payload["sv"] == 9

    def test_without_catalog(self):
        payload = create_share_payload({"T": {"x": 0, "y": 2}}, "Player")
        assert payload["sv"] is None
        assert payload["t"] == {"T": {"y": 2}}
        assert payload["pm"] == []


class TestShareMetadata:
    def test_caps_lengths(self):
        metadata = normalize_share_metadata("t" * 100, "d" * 300)
        assert len(metadata.title) == 80
        assert len(metadata.description) == 240

    def test_empty_is_none(self):
        assert normalize_share_metadata("  ", None) is None
        assert normalize_share_metadata(5, ["x"]) is None

    def test_description_only(self):
        assert normalize_share_metadata("", " notes ") == ShareMetadata("", "notes")


# ===========================================================================
# Decoding: hard failures
# ===========================================================================


class TestDecodeFailures:
    def test_no_token(self):
        result = decode_build(None, _catalog())
        assert not result.has_param
        assert result.error_code == ""
        assert result.build is None
        assert not result.ok

    def test_empty_token(self):
        result = decode_build("", _catalog())
        assert result.has_param
        assert result.error_code == ERROR_INCOMPLETE
        assert result.build is None

    def test_invalid_characters(self):
        assert decode_build("not-base64!!!", _catalog()).error_code == ERROR_CORRUPTED

    def test_altered_last_character(self):
        token = encode_payload(_payload())
        flipped = token[:-1] + ("B" if token[-1] == "A" else "A")
        result = decode_build(flipped, _catalog())
        assert result.error_code == ERROR_CORRUPTED
        assert result.build is None

    def test_not_json(self):
        token = encode_base64url("{cv: 1")
        assert decode_build(token, _catalog()).error_code == ERROR_CORRUPTED

    def test_json_not_an_object(self):
        token = encode_base64url(json.dumps([1, 2]))
        assert decode_build(token, _catalog()).error_code == ERROR_INCOMPLETE

    def test_unknown_model(self):
        token = encode_payload(_payload(m="InvalidModel"))
        assert decode_build(token, _catalog()).error_code == ERROR_INVALID_MODEL

    def test_missing_model(self):
        payload = _payload()
        del payload["m"]
        assert decode_build(encode_payload(payload), _catalog()).error_code == ERROR_INVALID_MODEL

    def test_missing_or_malformed_talents(self):
        payload = _payload()
        del payload["t"]
        assert decode_build(encode_payload(payload), _catalog()).error_code == ERROR_INCOMPLETE
        token = encode_payload(_payload(t=[["T1", "A", 1]]))
        assert decode_build(token, _catalog()).error_code == ERROR_INCOMPLETE

    def test_deeply_nested_json(self):
        token = encode_base64url("[" * 200000 + "]" * 200000)
        assert decode_build(token, _catalog()).error_code == ERROR_CORRUPTED

    def test_oversized_integer_literal(self):
        text = '{"cv":1,"sv":4,"m":"Player","a":"","t":{"T1":{"A":' + "9" * 5000 + "}}}"
        assert decode_build(encode_base64url(text), _catalog()).error_code == ERROR_CORRUPTED


# ===========================================================================
# Decoding: successful loads and warnings
# ===========================================================================


class TestDecodeSuccess:
    def test_reference_token_loads_cleanly(self):
        result = decode_build(encode_payload(_payload()), _catalog())
        assert result.ok
        assert result.warnings == []
        assert result.build.model_id == "Player"
        assert result.build.talents == {}
        assert result.metadata is None
        assert not result.overcap

    def test_round_trip(self):
        catalog = _catalog()
        token = encode_build(
            {"T1": {"B": 2, "A": 1}, "S1": {"SA": 3}},
            "Player",
            "Base",
            modifier_ids=["Bonus"],
            metadata=ShareMetadata("Ünïcode build ✓", "Bow focus"),
            catalog=catalog,
        )
        result = decode_build(token, catalog)
        assert result.ok
        assert result.warnings == []
        assert result.build.archetype_id == "Base"
        assert result.build.talents == {"T1": {"A": 1, "B": 2}, "S1": {"SA": 3}}
        assert result.build.player_modifier_ids == ["Bonus"]
        assert result.metadata == ShareMetadata("Ünïcode build ✓", "Bow focus")

    def test_ranks_are_clamped(self):
        token = encode_payload(_payload(t={
            "T1": {"A": "1", "B": 2.9, "D": 0, "Bogus": -1},
            "Empty": {},
        }))
        result = decode_build(token, _catalog())
        assert result.build.talents == {"T1": {"A": 1, "B": 2}}

    def test_unknown_modifiers_dropped(self):
        token = encode_payload(_payload(pm=["Nope", "Bonus", "Bonus", 7]))
        assert decode_build(token, _catalog()).build.player_modifier_ids == ["Bonus"]

    def test_outdated_codec_version(self):
        result = decode_build(encode_payload(_payload(cv=999)), _catalog())
        assert result.ok
        assert _codes(result) == [WARNING_OUTDATED_FORMAT]
        assert result.warning_messages == [
            "This shared build uses an outdated share format version."
        ]

    def test_missing_codec_version_is_outdated(self):
        payload = _payload()
        del payload["cv"]
        result = decode_build(encode_payload(payload), _catalog())
        assert _codes(result) == [WARNING_OUTDATED_FORMAT]

    def test_schema_mismatch(self):
        result = decode_build(encode_payload(_payload(sv=999)), _catalog())
        assert result.ok
        assert _codes(result) == [WARNING_SCHEMA_MISMATCH]
        assert result.warning_messages == [
            "This shared build was created for a different talent data version."
        ]

    def test_schema_checked_against_explicit_version(self):
        token = encode_payload(_payload(sv=4))
        assert _codes(decode_build(token, _catalog(), current_schema_version=5)) == [
            WARNING_SCHEMA_MISMATCH
        ]

    def test_null_schema_version_is_not_a_mismatch(self):
        assert decode_build(encode_payload(_payload(sv=None)), _catalog()).warnings == []
        assert decode_build(encode_payload(_payload(sv=7)), _catalog(None)).warnings == []

    def test_one_missing_prerequisite(self):
        result = decode_build(encode_payload(_payload(t={"T1": {"B": 1}})), _catalog())
        assert result.ok
        assert result.build.talents == {"T1": {"B": 1}}
        [warning] = result.warnings
        assert warning.code == WARNING_MISSING_PREREQUISITES
        assert warning.count == 1
        assert warning.message == "1 selected talent is missing prerequisites in the current data."

    def test_several_missing_prerequisites(self):
        result = decode_build(encode_payload(_payload(t={"T1": {"B": 1, "D": 1}})), _catalog())
        [warning] = result.warnings
        assert warning.count == 2
        assert warning.message == "2 selected talents are missing prerequisites in the current data."

    def test_creature_archetype_substituted(self):
        token = encode_payload(_payload(m="Creature", a="Dragon", t={"Dragon_Tree": {"Z": 1}}))
        result = decode_build(token, _catalog())
        assert result.ok
        assert _codes(result) == [WARNING_SUBSTITUTED_ARCHETYPE]
        assert result.build.archetype_id == "Horse"
        assert result.build.talents == {"Creature_Horse": {"O": 1}}

    def test_creature_build_scoped_and_pinned(self):
        token = encode_payload(_payload(
            m="Creature",
            a="Cat",
            t={"Creature_Cat": {"CombatPet_Claw": 2}, "Creature_Horse": {"X": 1}},
            pm=["Bonus"],
        ))
        result = decode_build(token, _catalog())
        assert result.warnings == []
        assert result.build.talents == {
            "Creature_Cat": {"CombatPet_Claw": 2, "CombatPet_Root": 1}
        }
        assert result.build.player_modifier_ids == []

    def test_overcap_flag(self):
        token = encode_payload(_payload(t={"T1": {"A": 1, "B": 2}}))
        assert not decode_build(token, _catalog()).overcap
        result = decode_build(token, _catalog(), config=BuildConfig(max_talent_points=2))
        assert result.ok
        assert result.overcap
        assert result.build.talents == {"T1": {"A": 1, "B": 2}}

    def test_creature_overcap_flag(self):
        token = encode_payload(_payload(m="Creature", a="Cat", t={
            "Creature_Cat": {"CombatPet_Root": 1, "CombatPet_Claw": 5},
        }))
        result = decode_build(token, _catalog(), config=BuildConfig(pet_level_cap=3))
        assert result.overcap

    def test_metadata_capped_on_decode(self):
        token = encode_payload(_payload(n="t" * 100, d=" x "))
        metadata = decode_build(token, _catalog()).metadata
        assert metadata == ShareMetadata("t" * 80, "x")


class TestDecodeFromQuery:
    def test_build_parameter(self):
        token = encode_payload(_payload(t={"T1": {"A": 1}}))
        result = decode_build_from_query(f"?foo=1&build={token}", _catalog())
        assert result.ok
        assert result.build.talents == {"T1": {"A": 1}}

    def test_absent_parameter(self):
        assert not decode_build_from_query("foo=1", _catalog()).has_param

    def test_blank_parameter(self):
        assert decode_build_from_query("build=", _catalog()).error_code == ERROR_INCOMPLETE
