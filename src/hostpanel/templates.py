"""Configuration template rendering.

Templates use ``{KEY}`` placeholders filled from a handler's data provider
map, plus optional sections::

    # SECTION ssl BEGIN.
    SSLEngine on
    # SECTION ssl END.

A section named ``ssl`` is kept when the render context holds a truthy
``SECTION_SSL`` value and dropped otherwise.  A file named ``<name>.tpl`` in
the configured template directory overrides the built-in template.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

log = logging.getLogger(__name__)

_PLACEHOLDER_RE = re.compile(r"\{([A-Z][A-Z0-9_]*)\}")
_SECTION_RE = re.compile(
    r"^[ \t]*# SECTION (?P<name>[a-z0-9_]+) BEGIN\.\n"
    r"(?P<body>.*?)"
    r"^[ \t]*# SECTION (?P=name) END\.\n",
    re.MULTILINE | re.DOTALL,
)

BUILTIN_TEMPLATES: dict[str, str] = {
    "httpd/vhost": """\
<VirtualHost {DOMAIN_IP}:80>
    ServerName {DOMAIN_NAME}
    ServerAlias www.{DOMAIN_NAME}
    DocumentRoot {DOCUMENT_ROOT}
    SuexecUserGroup {USER} {GROUP}
    <Directory {DOCUMENT_ROOT}>
        Require all granted
    </Directory>
# SECTION hsts BEGIN.
    Header always set Strict-Transport-Security "max-age={HSTS_MAX_AGE}{HSTS_INCLUDE_SUBDOMAINS}"
# SECTION hsts END.
</VirtualHost>
# SECTION ssl BEGIN.
<VirtualHost {DOMAIN_IP}:443>
    ServerName {DOMAIN_NAME}
    DocumentRoot {DOCUMENT_ROOT}
    SSLEngine on
    SSLCertificateFile {CERTIFICATE}
</VirtualHost>
# SECTION ssl END.
""",
    "httpd/vhost_forward": """\
<VirtualHost {DOMAIN_IP}:80>
    ServerName {DOMAIN_NAME}
    ServerAlias www.{DOMAIN_NAME}
    ProxyPreserveHost {FORWARD_PRESERVE_HOST}
    Redirect {FORWARD_TYPE} / {FORWARD}
</VirtualHost>
""",
    "httpd/vhost_disabled": """\
<VirtualHost {DOMAIN_IP}:80>
    ServerName {DOMAIN_NAME}
    ServerAlias www.{DOMAIN_NAME}
    DocumentRoot {DISABLED_PAGE_ROOT}
</VirtualHost>
""",
    "named/zone_base": """\
$TTL 3h
@ IN SOA ns1.{DOMAIN_NAME}. hostmaster.{DOMAIN_NAME}. (
    {SERIAL} ; serial
    3h ; refresh
    1h ; retry
    2w ; expire
    1h ; negative TTL
)
@ IN NS ns1.{DOMAIN_NAME}.
ns1 IN A {BASE_SERVER_PUBLIC_IP}
@ IN A {DOMAIN_IP}
www IN CNAME @
# SECTION mail BEGIN.
@ IN MX 10 mail.{DOMAIN_NAME}.
mail IN A {BASE_SERVER_PUBLIC_IP}
# SECTION mail END.
""",
    "named/subdomain": """\
{SUBDOMAIN_LABEL} IN A {DOMAIN_IP}
www.{SUBDOMAIN_LABEL} IN CNAME {SUBDOMAIN_LABEL}
""",
    "named/record": "{RECORD_NAME} {RECORD_CLASS} {RECORD_TYPE} {RECORD_DATA}\n",
}


class TemplateError(Exception):
    """Template missing or referencing a key absent from the context."""


class TemplateRenderer:
    def __init__(self, template_dir: Path | None = None) -> None:
        self.template_dir = template_dir

    def load(self, name: str) -> str:
        if self.template_dir is not None:
            override = self.template_dir / f"{name}.tpl"
            if override.is_file():
                log.debug("Using template override %s", override)
                return override.read_text()
        try:
            return BUILTIN_TEMPLATES[name]
        except KeyError:
            raise TemplateError(f"Unknown template '{name}'") from None

    def render(self, name: str, context: Mapping[str, Any]) -> str:
        """Render template ``name``; raises TemplateError on a missing key."""
        text = self.load(name)

        def _section(match: re.Match[str]) -> str:
            key = f"SECTION_{match.group('name').upper()}"
            return match.group("body") if context.get(key) else ""

        text = _SECTION_RE.sub(_section, text)

        def _value(match: re.Match[str]) -> str:
            key = match.group(1)
            if key not in context or context[key] is None:
                raise TemplateError(f"Template '{name}' needs {key}")
            return str(context[key])

        return _PLACEHOLDER_RE.sub(_value, text)
