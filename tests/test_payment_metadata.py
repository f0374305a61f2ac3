import json
from app.models import DraftKind
from app.services import payment_metadata as pm


def _meta(**over):
    base = dict(user_id=12, slot_id=5, duration_days=30, purchase_id=901, package_id=44,
                draft_kind=DraftKind.BANNER, draft_id=77)
    base.update(over)
    return pm.build_metadata(**base)


def test_custom_id_is_compact_json_within_limit():
    encoded = pm.encode_custom_id(_meta())
    assert len(encoded) <= pm.CUSTOM_ID_MAX
    assert json.loads(encoded)["draft_type"] == "banner"


def test_custom_id_drops_optional_keys_when_too_long():
    big = _meta(user_id=10**12, purchase_id=10**12, draft_id=10**12, package_id=10**12)
    encoded = pm.encode_custom_id(big)
    data = json.loads(encoded)
    assert len(encoded) <= pm.CUSTOM_ID_MAX
    assert "package_id" not in data
    # Identity keys survive
    assert data["user_id"] == 10**12 and data["purchase_id"] == 10**12


def test_stripe_metadata_values_are_strings_and_decode_back():
    meta = pm.to_stripe_metadata(_meta())
    assert all(isinstance(v, str) for v in meta.values())
    decoded = pm.decode_stripe_metadata(meta)
    assert decoded.parsed
    assert (decoded.user_id, decoded.slot_id, decoded.draft_id) == (12, 5, 77)
    assert decoded.draft_kind == DraftKind.BANNER
    assert decoded.product_type == "slot_5"


def test_paypal_custom_id_preferred_over_reference():
    meta = pm.decode_paypal_unit(pm.encode_custom_id(_meta()), "slot_3_99")
    assert meta.source == "custom_id"
    assert meta.user_id == 12


def test_paypal_unparseable_custom_id_falls_back_to_legacy_reference():
    meta = pm.decode_paypal_unit("not-json{", "slot_4_31")
    assert meta.source == "reference_id"
    assert (meta.slot_id, meta.user_id) == (4, 31)
    assert meta.product_type == "slot_4"


def test_legacy_string_in_custom_id_when_reference_missing():
    meta = pm.decode_paypal_unit("purchase_55", None)
    assert meta.purchase_id == 55


def test_listing_reference_and_unknown():
    listing = pm.parse_legacy_reference("listing_8_3")
    assert listing.product_type == "listing_purchase"
    assert listing.listing_id == 8

    unknown = pm.decode_paypal_unit("???", "garbage")
    assert not unknown.parsed
    assert unknown.product_type == "unknown"
    assert unknown.duration_or_default() == pm.DEFAULT_DURATION_DAYS
