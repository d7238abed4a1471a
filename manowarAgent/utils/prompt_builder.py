"""Prompt Template Builder for the Manowar coordinator.

Jinja2 模板位于 manowarAgent/config/prompt_templates，可通过
``load_custom_prompt`` 使用自定义模板。
"""
from pathlib import Path
from typing import Any, Dict

from jinja2.sandbox import SandboxedEnvironment

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "config" / "prompt_templates"


class PromptBuilder:
    """Prompt 模板构建器"""

    COORDINATOR_TEMPLATE = "coordinator.jinja2"
    SUMMARIZER_TEMPLATE = "summarizer.jinja2"
    EVALUATOR_TEMPLATE = "evaluator.jinja2"

    SUMMARIZER_SYSTEM = "You are a context summarization agent. Respond ONLY with valid JSON, no markdown."
    EVALUATOR_SYSTEM = "You are a workflow performance evaluator. Respond only with valid JSON."

    _env = SandboxedEnvironment(trim_blocks=False, keep_trailing_newline=True)

    @staticmethod
    def _load_template(template_path: Path) -> str:
        with open(template_path, "r", encoding="utf-8") as f:
            return f.read()

    @classmethod
    def _render(cls, name: str, params: Dict[str, Any]) -> str:
        template = cls._load_template(TEMPLATE_DIR / name)
        return cls._env.from_string(template).render(**params).strip()

    @classmethod
    def coordinator_prompt(cls, **params) -> str:
        """协调者系统提示"""
        return cls._render(cls.COORDINATOR_TEMPLATE, params)

    @classmethod
    def summarizer_prompt(cls, **params) -> str:
        """记忆擦除前的摘要提示"""
        return cls._render(cls.SUMMARIZER_TEMPLATE, params)

    @classmethod
    def evaluator_prompt(cls, **params) -> str:
        return cls._render(cls.EVALUATOR_TEMPLATE, params)

    @classmethod
    def load_custom_prompt(cls, template_path: str, **params) -> str:
        """加载自定义模板

        Args:
            template_path: 模板文件路径
            **params: 模板参数
        """
        template = cls._load_template(Path(template_path))
        return cls._env.from_string(template).render(**params).strip()
