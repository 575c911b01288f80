"""Template processing of healing actions.

An ``ObjectTemplate`` walks an object recursively and replaces every string it
contains with the result of rendering that string as a Jinja template. The data
of the alert that triggered the action is available to the templates through a
set of named variables, by default ``alert``, ``labels`` and ``annotations``:

    template = ObjectTemplate()
    action = JobAction(template="Restart {{ labels.instance }}")
    template.process(action, alert)

Delimiters can be changed per rule, which is needed when the action itself
contains Jinja text, for example an Ansible playbook:

    template = ObjectTemplate(delimiters=("[[", "]]"))
"""

from __future__ import annotations

import dataclasses
from typing import Any

from jinja2 import Environment, StrictUndefined, TemplateError
from loguru import logger
from pydantic import BaseModel

from autoheal.errors import TemplateExpansionError

DEFAULT_DELIMITERS = ("{{", "}}")

# Variables available to all the templates, and the expressions that compute
# them from the template data.
DEFAULT_VARIABLES = {
    "alert": "data",
    "labels": "data.labels",
    "annotations": "data.annotations",
}


class ObjectTemplate:
    """Renders the strings contained in an object as templates."""

    def __init__(
        self,
        delimiters: tuple[str, str] | None = None,
        variables: dict[str, str] | None = None,
    ):
        """Initialize the template processor.

        Args:
            delimiters: Left and right delimiters of template expressions.
            variables: Map of variable name to the expression that computes its
                value. The template data is available to expressions as ``data``.
        """
        left, right = delimiters or DEFAULT_DELIMITERS
        if not left or not right:
            raise ValueError("Template delimiters can't be empty")
        self.left = left
        self.right = right

        # Statements and comments start with the left delimiter too, so only the
        # delimiters are special and text like "${#ITEMS[@]}" is left alone.
        self._env = Environment(
            variable_start_string=left,
            variable_end_string=right,
            block_start_string=f"{left}%",
            block_end_string=f"%{right}",
            comment_start_string=f"{left}#",
            comment_end_string=f"#{right}",
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,
        )

        self._variables: dict[str, Any] = {}
        for name, expression in (variables or DEFAULT_VARIABLES).items():
            try:
                self._variables[name] = self._env.compile_expression(
                    expression, undefined_to_none=False
                )
            except TemplateError as e:
                raise TemplateExpansionError(expression, e) from e

    def process(self, obj: Any, data: Any) -> Any:
        """Replace in place all the strings inside the object.

        Mutable containers and models are modified in place. The processed object
        is also returned, which is the only way to get the result for a plain
        string.

        If a template fails the error is raised and the strings already
        processed keep their new values.

        Raises:
            TemplateExpansionError: If a template can't be parsed or rendered.
        """
        context = self._context(data)
        return self._process_value(obj, context)

    def _context(self, data: Any) -> dict[str, Any]:
        context: dict[str, Any] = {}
        for name, expression in self._variables.items():
            try:
                context[name] = expression(data=data)
            except TemplateError as e:
                raise TemplateExpansionError(name, e) from e
        return context

    def _process_value(self, value: Any, context: dict[str, Any]) -> Any:
        if value is None:
            return None
        if isinstance(value, str):
            return self._render(value, context)
        if isinstance(value, dict):
            for key in list(value):
                value[key] = self._process_value(value[key], context)
            return value
        if isinstance(value, list):
            for index, item in enumerate(value):
                value[index] = self._process_value(item, context)
            return value
        if isinstance(value, tuple):
            return type(value)(self._process_value(item, context) for item in value)
        if isinstance(value, BaseModel):
            return self._process_model(value, context)
        if dataclasses.is_dataclass(value) and not isinstance(value, type):
            return self._process_dataclass(value, context)

        logger.trace(f"Skipping templating of value of type '{type(value).__name__}'")
        return value

    def _process_model(self, model: BaseModel, context: dict[str, Any]) -> BaseModel:
        frozen = model.model_config.get("frozen", False)
        for name in type(model).model_fields:
            current = getattr(model, name)
            processed = self._process_value(current, context)
            if processed is not current and not frozen:
                setattr(model, name, processed)
        return model

    def _process_dataclass(self, obj: Any, context: dict[str, Any]) -> Any:
        frozen = obj.__dataclass_params__.frozen
        for field in dataclasses.fields(obj):
            if not field.init:
                continue
            current = getattr(obj, field.name)
            processed = self._process_value(current, context)
            if processed is not current and not frozen:
                setattr(obj, field.name, processed)
        return obj

    def _render(self, text: str, context: dict[str, Any]) -> str:
        if self.left not in text:
            return text
        try:
            rendered = self._env.from_string(text).render(context)
        except TemplateError as e:
            raise TemplateExpansionError(text, e) from e
        logger.trace(f"Template '{text}' rendered as '{rendered}'")
        return rendered
