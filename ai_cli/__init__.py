"""
ai-cli: natural language to shell one-liners

A command-line tool that supports:
- Shell one-liner generation with a local Hugging Face model or AWS Bedrock
- Printing, copying or (after confirmation) running the generated command
- Raw text generation via the generate subcommand
"""

__version__ = "1.0.0"
