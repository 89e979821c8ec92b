from flashstore.utils import sanitize_input


def test_sanitize_removes_script_tags():
    s = "<script>alert(1)</script>Bob"
    out = sanitize_input(s)
    assert "script" not in out.lower()
    assert "bob" in out.lower()


def test_sanitize_keeps_plain_punctuation():
    out = sanitize_input("  Ratchet & Clank; Rift Apart \x00")
    assert out == "Ratchet & Clank; Rift Apart"


def test_sanitize_none_is_empty():
    assert sanitize_input(None) == ""


def test_sanitize_keeps_angle_brackets_in_plain_text():
    assert sanitize_input("Tom > Jerry") == "Tom > Jerry"
    assert sanitize_input("I <3 Games") == "I <3 Games"


def test_sanitize_still_strips_markup_around_text():
    assert sanitize_input("<b>Hades</b> & <i>Celeste</i>") == "Hades & Celeste"
