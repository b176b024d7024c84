import json
import logging
import uuid
from typing import List, Optional

from openai import AsyncOpenAI, OpenAIError
from pydantic import BaseModel, Field, ValidationError

from vibeprompt.storage import PromptTemplate

logger = logging.getLogger(__name__)

MAX_SMART_SELECT_PATHS = 3000
MAX_SUGGESTION_PATHS = 300
CONFIG_SUFFIXES = (".json", ".config.js", ".yml", ".toml", ".xml")

REFINE_SYSTEM_PROMPT = """You are an expert Prompt Engineer for AI Coding Agents (like Cursor, Windsurf, Replit).

Your goal is to take a raw user instruction and a LIST OF SELECTED FILES, and output a highly structured, context-aware prompt.

Rules:
1. Do NOT hallucinate file names. Only use the ones provided in the list.
2. If the user asks for a "review" or "refactor", explicitly reference the most relevant files from the list.
3. Format the output to be ready for an LLM to execute.
4. Keep it concise but specific.
5. Output ONLY the prompt content. No filler, no meta-commentary, no markdown fences around the whole response.
"""

DEFAULT_INTENT = "Analyze the selected files and provide a summary of their purpose and potential improvements."


class _Suggestion(BaseModel):
    name: str
    template: str
    tags: List[str] = Field(default_factory=lambda: ["suggested"])


class _Suggestions(BaseModel):
    suggestions: List[_Suggestion] = Field(default_factory=list)


class _RelevantFiles(BaseModel):
    relevantFiles: List[str] = Field(default_factory=list)


def stack_sample(paths: List[str]) -> List[str]:
    """Shallow paths and config files hint at the stack; cap the sample."""
    sample = [
        p for p in paths
        if len(p.split("/")) <= 2 or p.endswith(CONFIG_SUFFIXES)
    ]
    return sample[:MAX_SUGGESTION_PATHS]


class PromptAssistant:
    """One-shot model calls: template suggestions, smart select, refinement."""

    def __init__(self, client: Optional[AsyncOpenAI] = None, model: str = "gpt-4o-mini",
                 fast_model: Optional[str] = None, api_key: Optional[str] = None):
        self.client = client or AsyncOpenAI(api_key=api_key)
        self.model = model
        self.fast_model = fast_model or model

    async def _json(self, prompt: str) -> str:
        response = await self.client.chat.completions.create(
            model=self.fast_model,
            messages=[{"role": "user", "content": prompt}],
            response_format={"type": "json_object"},
        )
        return response.choices[0].message.content or ""

    async def suggest_templates(self, paths: List[str]) -> List[PromptTemplate]:
        prompt = f"""
You are a Developer Productivity Expert.

Analyze the following file list from a project to determine the technology stack.

File List Sample:
{chr(10).join(stack_sample(paths))}

Task: Generate 3 to 5 prompt templates that would be highly useful for a developer working in this codebase.
The templates should be specific to the detected framework or language.

Return a JSON object with a property "suggestions": an array of objects with
"name" (short title), "template" (the prompt text) and "tags" (array of strings).
"""
        try:
            text = await self._json(prompt)
            parsed = _Suggestions.model_validate(json.loads(text or "{}"))
        except (OpenAIError, json.JSONDecodeError, ValidationError) as e:
            logger.error("Template suggestion failed: %s", e)
            return []

        return [
            PromptTemplate(
                id=f"suggested-{uuid.uuid4().hex[:9]}",
                name=s.name,
                template=s.template,
                tags=s.tags or ["suggested"],
            )
            for s in parsed.suggestions
        ]

    async def suggest_relevant_files(self, instruction: str, paths: List[str]) -> List[str]:
        prompt = f"""
You are a Code Repository Intelligence Agent.

Task: Identify which files from the provided list are relevant to the User's Instruction.
User Instruction: "{instruction}"

Files List:
{chr(10).join(paths[:MAX_SMART_SELECT_PATHS])}

Return a JSON object with a single property "relevantFiles" containing an array of exact paths from the list.
If no specific files are mentioned, infer the most logical entry points or relevant modules.
"""
        text = await self._json(prompt)
        if not text:
            return []
        parsed = _RelevantFiles.model_validate(json.loads(text))
        known = set(paths)
        return [p for p in parsed.relevantFiles if p in known]

    async def refine_instruction(self, instruction: str, selected: List[str]) -> str:
        files = "\n".join(selected) if selected else "(No files selected)"
        effective = instruction.strip() or DEFAULT_INTENT
        prompt = (
            f'User Instruction: "{effective}"\n\n'
            f"Selected Files Context:\n{files}\n\n"
            "Refine this instruction into a perfect prompt. Return ONLY the raw text of the refined prompt."
        )
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": REFINE_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            temperature=0.7,
        )
        text = response.choices[0].message.content
        return text.strip() if text else "Failed to generate."
