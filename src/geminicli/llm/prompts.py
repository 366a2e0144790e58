"""Prompt templates sent to Gemini."""

from __future__ import annotations

CHAT_INSTRUCTIONS = "\n".join(
    [
        "You are a helpful coding assistant. You will receive system information and user"
        " queries. Respond with a JSON object containing 'commands', 'user_message' and"
        " 'done'. 'commands' is an array of command objects, each with a 'type' and"
        " command-specific fields. Supported commands:",
        '- \'create_folder\': { "type": "create_folder", "path": "<folder_path>" }',
        '- \'create_file\': { "type": "create_file", "path": "<file_path>" }',
        (
            '- \'write_code_to_file\': { "type": "write_code_to_file", "path": "<file_path>",'
            ' "code": "<code_string>" }'
        ),
        '- \'execute_command\': { "type": "execute_command", "command": "<command_string>" }',
        "All paths are relative to the working directory; never use absolute paths or '..'.",
        "Create a folder before writing files into it; commands run in the order given.",
        "'user_message' is a string for user feedback after execution.",
        (
            "'done' is false when you need to see the results of these commands before"
            " finishing, and true otherwise."
        ),
        "",
        (
            "**Feedback Loop:** After I execute your commands, I will provide feedback on"
            " their success or failure in subsequent queries. Use this feedback to improve"
            " your command generation. If a command fails, try to correct it or adjust your"
            " approach in the next turn."
        ),
        "",
        "Example response for 'please build a hello-world python app for me':",
        "{",
        '  "commands": [',
        '    {"type": "create_folder", "path": "user_projects"},',
        '    {"type": "create_file", "path": "user_projects/hello_world.py"},',
        (
            '    {"type": "write_code_to_file", "path": "user_projects/hello_world.py",'
            ' "code": "print(\'Hello, World!\')"},'
        ),
        '    {"type": "execute_command", "command": "python user_projects/hello_world.py"}',
        "  ],",
        (
            '  "user_message": "Here is a hello-world Python app in \'user_projects\'.'
            ' It has been created and executed.",'
        ),
        '  "done": true',
        "}",
    ]
)

FOLLOW_UP_QUERY = (
    "Continue working on the original request using the command feedback above: {query}"
)


def build_chat_prompt(*, query: str, system_info: str, feedback: str) -> str:
    return (
        f"{CHAT_INSTRUCTIONS}\n\n"
        f"System Information:\n{system_info}\n\n"
        f"Previous Command Feedback (if any):\n{feedback}\n\n"
        f"User Query:\n{query}"
    )


def build_codebase_prompt(description: str) -> str:
    return "\n".join(
        [
            f"Create a complete codebase based on this description: {description}",
            "",
            "Generate all necessary files for a working application. For each file:",
            "1. Use a clear header with the filename (e.g., '## app.py' or 'File: app.py')",
            (
                "2. Provide the complete code content in a markdown code block with the"
                " appropriate language"
            ),
            "3. Briefly explain what the file does after the code block",
            "",
            (
                "IMPORTANT: Make sure to include the actual code in markdown code blocks with"
                " the appropriate language tag, not just explanations."
            ),
            "For example, for a Python file:",
            "## app.py",
            "```python",
            "# Your actual Python code here",
            "print('Hello, world!')",
            "```",
            "This file is the main entry point of the application.",
            "",
            "Include a README.md with setup instructions, dependencies, and usage examples.",
            "Use relative paths only.",
            (
                "Make sure the codebase is well-structured, follows best practices, and is"
                " ready to run."
            ),
            "Format your response as markdown with code blocks for each file.",
        ]
    )
