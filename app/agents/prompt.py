TOOL_GUIDE_PROMPT = """TOOLS:
- getCurrentProjectContext: call this first when the user refers to "this project" or asks about earlier decisions. It returns the project and its saved memories.
- createMemory: save a durable fact, decision or preference that belongs to the current project. Give it a short title and an importance from 1 to 10.
- getMemories: list the memories saved for the current project.
- createGeneralMemory: save something about the user that matters beyond one project.
- getGeneralMemories: list the user's general memories.

Only save information the user would expect you to remember. Never invent tool names or arguments. If a tool reports success=false, tell the user briefly and carry on without it."""


def build_system_prompt(base_prompt: str) -> str:
    """Append the tool guide to the chat's system prompt."""
    return f"{base_prompt.rstrip()}\n\n{TOOL_GUIDE_PROMPT}"
