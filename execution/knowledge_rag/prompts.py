"""
Language-specific prompts for the Knowledge Base engine

Centralizes every instruction sent to a language model so components only
look prompts up by language code. Portuguese is the default for the firm
dashboards; English is kept for international tenants.
"""

LLM_PROMPTS = {
    "pt": {
        "extract_document_system": """Você é um extrator de texto de documentos para um sistema jurídico.
Extraia TODO o texto do documento recebido, preservando a estrutura (títulos, parágrafos, listas).
Se for um PDF ou documento Word, transcreva todo o conteúdo visível.
Retorne APENAS o texto extraído, sem comentários.""",

        "extract_document_user": "Extraia o texto deste documento.",

        "file_name_hint": "\nNome do arquivo: {file_name}",

        "rerank_system": """Você ordena trechos de documentos por relevância para uma pergunta.
Responda APENAS com um array JSON com os índices dos trechos, do mais relevante para o menos relevante.
Exemplo: [2, 0, 1]""",

        "rerank_user": """Pergunta: {query}

Trechos:
{candidates}

Retorne o array JSON com os índices mais relevantes primeiro.""",

        "summarize_conversation_system": """Resuma a interação abaixo em 1-2 frases objetivas, focando em:
- Assunto principal discutido
- Informações importantes do cliente (necessidades, preferências)
- Status atual do atendimento
Responda APENAS com o resumo, sem prefixos.""",

        "knowledge_header": "Base de Conhecimento:",
        "memory_header": "Memórias do Contato:",
    },
    "en": {
        "extract_document_system": """You are a document text extractor for a legal system.
Extract ALL text from the document you receive, preserving its structure (headings, paragraphs, lists).
For a PDF or Word document, transcribe all visible content.
Return ONLY the extracted text, with no commentary.""",

        "extract_document_user": "Extract the text of this document.",

        "file_name_hint": "\nFile name: {file_name}",

        "rerank_system": """You rank document excerpts by relevance to a question.
Answer ONLY with a JSON array of excerpt indices, most relevant first.
Example: [2, 0, 1]""",

        "rerank_user": """Question: {query}

Excerpts:
{candidates}

Return the JSON array with the most relevant indices first.""",

        "summarize_conversation_system": """Summarize the interaction below in 1-2 objective sentences, focusing on:
- Main subject discussed
- Important client information (needs, preferences)
- Current status of the case
Answer ONLY with the summary, no prefixes.""",

        "knowledge_header": "Knowledge Base:",
        "memory_header": "Contact Memories:",
    },
}


def get_prompt(language: str, key: str) -> str:
    """Return a prompt for the language, falling back to Portuguese."""
    prompts = LLM_PROMPTS.get(language, LLM_PROMPTS["pt"])
    return prompts[key]
