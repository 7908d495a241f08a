"""Tests for configuration template rendering."""

import pytest

from hostpanel.templates import TemplateError, TemplateRenderer


def test_render_fills_placeholders():
    text = TemplateRenderer().render(
        "named/record",
        {"RECORD_NAME": "txt", "RECORD_CLASS": "IN", "RECORD_TYPE": "TXT", "RECORD_DATA": '"v"'},
    )
    assert text == 'txt IN TXT "v"\n'


def test_sections_kept_or_dropped():
    context = {
        "DOMAIN_IP": "192.0.2.10",
        "DOMAIN_NAME": "example.test",
        "DOCUMENT_ROOT": "/var/www/example.test/htdocs",
        "USER": "vu2001",
        "GROUP": "vu2001",
        "CERTIFICATE": "/etc/certs/example.test.pem",
        "HSTS_MAX_AGE": 100,
        "HSTS_INCLUDE_SUBDOMAINS": "",
    }
    renderer = TemplateRenderer()

    plain = renderer.render("httpd/vhost", {**context, "SECTION_SSL": False})
    assert ":443" not in plain
    assert "Strict-Transport-Security" not in plain
    assert "# SECTION" not in plain

    secure = renderer.render(
        "httpd/vhost", {**context, "SECTION_SSL": True, "SECTION_HSTS": True}
    )
    assert "<VirtualHost 192.0.2.10:443>" in secure
    assert 'max-age=100"' in secure


def test_missing_key_raises():
    with pytest.raises(TemplateError, match="needs DOMAIN_NAME"):
        TemplateRenderer().render("httpd/vhost_disabled", {"DOMAIN_IP": "192.0.2.1"})


def test_unknown_template_raises():
    with pytest.raises(TemplateError, match="Unknown template"):
        TemplateRenderer().render("httpd/nope", {})


def test_override_file_wins(tmp_path):
    (tmp_path / "named").mkdir()
    (tmp_path / "named" / "record.tpl").write_text("{RECORD_NAME} custom\n")

    text = TemplateRenderer(tmp_path).render("named/record", {"RECORD_NAME": "mx"})

    assert text == "mx custom\n"
