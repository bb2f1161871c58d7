"""Minimal demonstration of a streaming chat session."""

import asyncio

from chat_core.api.service import get_messages, run_chat

if __name__ == "__main__":
    question = "你好，请用一句话介绍你自己"
    result = asyncio.run(run_chat(question))
    print("User:", question)
    print("Assistant:", (result["assistant_message"] or {}).get("content"))
    if result["error"]:
        print("Error:", result["error"]["message"])
    print("History size:", len(get_messages()))
