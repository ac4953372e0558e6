SYSTEM_PROMPT = """You are a document-grounded assistant.
Rules: answer from the provided context, refer to context blocks by number,
say the answer was not found in the documents if it is absent, do not speculate."""

FALLBACK_SYSTEM_PROMPT = """You are a helpful assistant.
No relevant document content was found for this question; answer from general
knowledge and say that the uploaded documents did not cover it."""


class PromptBuilder:
    @staticmethod
    def build_messages(question: str, context_text: str) -> list[dict]:
        """
        Compiles the system prompt and retrieved context into chat messages for
        the external generation service. An empty context yields a context-free prompt.
        """
        if not context_text.strip():
            return [
                {"role": "system", "content": FALLBACK_SYSTEM_PROMPT},
                {"role": "user", "content": question}
            ]

        user_content = f"Context:\n---\n{context_text}\n---\nQuestion: {question}"

        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": user_content}
        ]
