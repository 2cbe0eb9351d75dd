from __future__ import annotations

import logging
import re

from stepflow.application.port import TemplateStore
from stepflow.domain.entity import Template

logger = logging.getLogger(__name__)

_WRAPPED_REFERENCE = re.compile(r"^\{\{template:(.+)\}\}$")


class InMemoryTemplateStore(TemplateStore):
    """Holds templates in a dict keyed by id."""

    def __init__(self, templates: list[Template] | None = None):
        self._templates: dict[str, Template] = {}
        for template in templates or []:
            self.add(template)

    def add(self, template: Template) -> None:
        self._templates[template.id] = template

    def get(self, template_id: str) -> Template | None:
        return self._templates.get(template_id)

    def list(self, category: str | None = None) -> list[Template]:
        return [t for t in self._templates.values() if category is None or t.category == category]

    def remove(self, template_id: str) -> bool:
        return self._templates.pop(template_id, None) is not None

    def find(self, reference: str) -> Template | None:
        """
        Looks a template up by id, then ``category/name``, then name.

        :param reference: The bare reference or the full ``{{template:...}}`` form
        :type reference: str
        :returns: The first match, or None
        :rtype: Template | None
        """
        m = _WRAPPED_REFERENCE.match(reference.strip())
        reference = (m.group(1) if m else reference).strip()
        if not reference:
            return None

        template = self._templates.get(reference)
        if template is not None:
            return template

        if "/" in reference:
            category, name = reference.split("/", 1)
            for template in self._templates.values():
                if template.category == category and template.name == name:
                    return template

        for template in self._templates.values():
            if template.name == reference:
                return template

        logger.debug("No template matches reference %s", reference)
        return None

    async def resolve_template_reference(self, reference: str) -> Template | None:
        return self.find(reference)
