"""Prompt templates for the browser agent and the QA reviewer."""

from __future__ import annotations


def _bullets(items: list[str]) -> str:
    return "\n".join(f"- {item}" for item in items)


def script_failed_context(failed_step_number: int, step_history: str, last_step_description: str) -> str:
    return f"""CRITICAL: The previous script failed at step {failed_step_number}.
We are currently in the middle of the quest.

HISTORY OF EXECUTED STEPS:
{step_history}

YOUR TASK:
Resume the quest from the current state. Do NOT restart the quest.
Analyze the current page state (screenshot) and determine the next logical step to proceed towards the goal.
The last successful action was: {last_step_description}."""


def script_retry_context(reason: str, step_history: str) -> str:
    return f"""CRITICAL: The previous execution was deemed unsuccessful by the QA Agent.
REASON: {reason}

HISTORY OF EXECUTED STEPS:
{step_history}

YOUR TASK:
Fix the issue and complete the quest. Verify the state before stopping.
You are continuing from the current state shown in the screenshot."""


def qa_review_prompt(quest_description: str, step_context: str, expected_output: list[str] | None = None) -> str:
    data_section = ""
    if expected_output:
        fields = ", ".join(f'"{name}"' for name in expected_output)
        data_section = f"""

2. DATA EXTRACTION:
Extract these fields from the screenshot and history when visible: {fields}."""
    return f"""You are a QA and Data Extraction agent.

GOAL: "{quest_description}"

1. VERIFICATION:
Look at the screenshot. Has the goal been FULLY accomplished?

EXECUTION HISTORY:
{step_context}{data_section}

Respond with ONLY a JSON object:
{{
  "success": boolean,
  "reason": "short explanation of why",
  "data": {{}}
}}"""


def selector_hints_note(selectors: list[str]) -> str:
    return f"""(System Note) HISTORICAL KNOWLEDGE:
The following selectors have successfully worked on this page in the past.
Prefer them if they seem relevant to your current goal:
{_bullets(selectors)}"""


def failed_selectors_note(selectors: list[str]) -> str:
    return f"""(System Note) The following selectors have recently FAILED on this page. DO NOT USE THEM AGAIN:
{_bullets(selectors)}"""


def browser_agent_prompt(
    quest_description: str,
    context: str | None,
    dynamic_email: str,
    viewport_width: int = 1024,
    viewport_height: int = 768,
    scroll_amount: int = 384,
) -> str:
    context_line = f"CONTEXT: {context}\n" if context else ""
    return f"""You are a browser automation agent.
Your goal is to fulfill this request: "{quest_description}"
{context_line}
DATA RULES:
1. If you need to sign up with a NEW email, use this one: {dynamic_email}
2. If you need a credit card, use the standard test card 4111 1111 1111 1111, expiry 03/30, CVC 737.

GUIDELINES:
1. Use the available tools. When the goal is reached, reply without calling any tool.
2. When filling out forms, prefer the 'press_key' tool with 'Tab' to move between fields after focusing the first one.

3. PAGE NAVIGATION & SCROLLING:
   - The viewport is {viewport_width}x{viewport_height} pixels. You can only interact with content currently visible.
   - Use 'scroll' to find content that is not in the current screenshot (default {scroll_amount}px).
   - "Continue" or "Submit" buttons and terms checkboxes are often below the fold. Scroll before giving up.

4. CLICKING STRATEGY:
   - Use 'click_at_coordinates' as your PRIMARY clicking method: estimate the center of the element in the screenshot.
   - Always include a 'description' of what you are clicking.
   - Use the selector-based 'click' tool only when coordinate clicks have failed for the same step.

5. SELECTOR STRATEGIES (FALLBACK ONLY):
   - Prefer text selectors for buttons and links: "text=Sign Up" or "button:has-text('Continue')".
   - Use stable attributes when available: "[data-testid='submit']", "#email", "[name='password']".
   - Avoid long chains (div > div > span) and generated class names."""
