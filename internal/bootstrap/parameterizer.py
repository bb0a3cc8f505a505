"""Bootstrap parameterizer: render compute-node init scripts.

Templates use `{{name}}` placeholders. Each name maps to a literal or a
LateBoundValue. Resolved values are substituted directly; unresolved ones are
left as the provisioning engine's `${producer.attribute}` interpolation
tokens and listed on the result, so the engine fills them in at provision
time. When any token is deferred, literal `${` sequences already in the
script are escaped as `${!` so the engine passes them through untouched.
"""

import re

from internal.models.errors import UnknownPlaceholder, UnresolvedDependency
from internal.models.types import DatabaseDescriptor, LateBoundValue, RenderedBootstrap


PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")

# Every step is guarded or naturally repeatable: replacement nodes re-run it.
REFERENCE_TEMPLATE = """#!/bin/bash
set -eux
dnf -y update || yum -y update
if ! rpm -q nginx >/dev/null 2>&1; then
  dnf -y install nginx || yum -y install nginx
fi
TOKEN=$(curl -s -X PUT http://169.254.169.254/latest/api/token -H "X-aws-ec2-metadata-token-ttl-seconds: 60")
INSTANCE_ID=$(curl -s -H "X-aws-ec2-metadata-token: $TOKEN" http://169.254.169.254/latest/meta-data/instance-id)
cat > /usr/share/nginx/html/index.html <<EOF
<h1>{{title}}</h1><p>Instance: $INSTANCE_ID</p><p>DB endpoint: {{databaseEndpoint}}:{{databasePort}}</p>
EOF
systemctl enable nginx
systemctl restart nginx
"""


def placeholders(template: str) -> list:
    """Placeholder names in order of first appearance."""
    names = []
    for match in PLACEHOLDER.finditer(template):
        if match.group(1) not in names:
            names.append(match.group(1))
    return names


def render(template: str, mapping: dict, eager: bool = False) -> RenderedBootstrap:
    """Render `template` with `mapping`.

    With `eager=True` every late-bound value must already be resolved.

    Raises:
        UnknownPlaceholder: If the template names something absent from the mapping.
        UnresolvedDependency: If `eager` and a late-bound value is unresolved.
    """
    names = placeholders(template)
    missing = [name for name in names if name not in mapping]
    if missing:
        raise UnknownPlaceholder(missing)

    pending = [
        mapping[name] for name in names
        if isinstance(mapping[name], LateBoundValue) and not mapping[name].resolved
    ]
    if pending and eager:
        raise UnresolvedDependency(
            f"bootstrap needs {', '.join(v.token for v in pending)} before it can be rendered"
        )

    def _escape(text: str) -> str:
        return text.replace("${", "${!") if pending else text

    deferred = []

    def _substitute(match) -> str:
        value = mapping[match.group(1)]
        if isinstance(value, LateBoundValue):
            if value.resolved:
                return _escape(str(value.value))
            if value not in deferred:
                deferred.append(value)
            return value.token
        return _escape(str(value))

    pieces = []
    last = 0
    for match in PLACEHOLDER.finditer(template):
        pieces.append(_escape(template[last:match.start()]))
        pieces.append(_substitute(match))
        last = match.end()
    pieces.append(_escape(template[last:]))

    return RenderedBootstrap(script="".join(pieces), deferred=tuple(deferred))


def reference_mapping(database: DatabaseDescriptor, title: str) -> dict:
    """Placeholder mapping for REFERENCE_TEMPLATE."""
    if database is None:
        raise UnresolvedDependency("bootstrap mapping needs the database descriptor")
    return {
        "title": title,
        "databaseEndpoint": database.endpoint,
        "databasePort": str(database.port),
    }
