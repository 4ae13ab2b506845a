from backend.app.materials import (
    canonical_key,
    clean_material_name,
    materials_equivalent,
    normalize_material_name,
)


def test_clean_material_name_strips_trailing_zeros():
    assert clean_material_name("  Cobre0 ") == "Cobre"
    assert clean_material_name("Ferro00") == "Ferro"
    assert clean_material_name("0") == "0"
    assert clean_material_name(None) is None
    assert clean_material_name("") == ""


def test_normalize_material_name_removes_accents_and_punctuation():
    assert normalize_material_name("Alumínio-Perfil!") == "aluminio perfil"
    assert normalize_material_name("  Papelão  ") == "papelao"
    assert normalize_material_name(None) == ""


def test_canonical_key_applies_synonyms_and_ignores_word_order():
    assert canonical_key("Cobre miúdo") == canonical_key("cu miudo0")
    assert canonical_key("miúdo cobre") == canonical_key("cobre miudo")
    assert canonical_key("Fe grosso") == "ferro grosso"


def test_materials_equivalent():
    assert materials_equivalent("Alumínio", "aluminum")
    assert materials_equivalent("Cabo de cobre", "fio de cu")
    assert not materials_equivalent("Cobre", "Ferro")
    assert not materials_equivalent("", "Ferro")
    assert not materials_equivalent("Ferro", None)
