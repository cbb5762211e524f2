import base64
import io
import json

import httpx
import pypdfium2 as pdfium
import pytest
import respx

from shared.ai.AIStageClients import AIStageClients
from shared.ai.stages.ExtractStage import ExtractStage
from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.llm.LLMClientInterface import strip_code_fence
from shared.clients.llm.LLMClientManager import LLMClientManager
from shared.clients.llm.ollama.LLMClientOllama import LLMClientOllama
from shared.errors.ClientErrors import ClientRequestError
from shared.models.invoice import LineItem

OLLAMA_URL = "http://ollama.test:11434"
ITEMS = [LineItem(description="Monthly hosting plan", amount=29.0)]


@pytest.fixture
def ollama_env(monkeypatch):
    monkeypatch.setenv("LLM_ENGINE", "ollama")
    monkeypatch.setenv("LLM_OLLAMA_BASE_URL", OLLAMA_URL)
    monkeypatch.setenv("LLM_CHAT_MODEL", "llama3.1:8b")
    monkeypatch.setenv("LLM_VISION_MODEL", "llama3.2-vision")
    monkeypatch.setenv("EMBED_ENGINE", "ollama")
    monkeypatch.setenv("EMBED_OLLAMA_BASE_URL", OLLAMA_URL)
    monkeypatch.setenv("EMBED_MODEL", "nomic-embed-text")


@pytest.fixture
async def ai_stages(ollama_env, helper_config):
    llm_client = LLMClientManager(helper_config=helper_config).get_client()
    embed_client = EmbedClientManager(helper_config=helper_config).get_client()
    await llm_client.boot()
    await embed_client.boot()
    yield AIStageClients.from_clients(helper_config, llm_client, embed_client)
    await llm_client.close()
    await embed_client.close()


def chat_reply(payload) -> httpx.Response:
    content = payload if isinstance(payload, str) else json.dumps(payload)
    return httpx.Response(200, json={"model": "llama3.1:8b", "message": {"role": "assistant", "content": content}, "done": True})


def sent_body(route) -> dict:
    return json.loads(route.calls.last.request.content)


##########################################
################ EXTRACT #################
##########################################

PNG = b"\x89PNG\r\n\x1a\n scanned invoice"


def blank_pdf(pages: int = 1) -> bytes:
    document = pdfium.PdfDocument.new()
    for _ in range(pages):
        document.new_page(200, 100)
    buffer = io.BytesIO()
    document.save(buffer)
    document.close()
    return buffer.getvalue()


def extraction_reply() -> httpx.Response:
    return chat_reply({
        "vendor": " Acme Cloud ",
        "date": "June 1, 2023",
        "total": 29.0,
        "line_items": [{"description": "Monthly hosting plan", "amount": 29.0}],
    })


@respx.mock
async def test_extract_sends_image_to_vision_model(ai_stages):
    route = respx.post(f"{OLLAMA_URL}/api/chat").mock(return_value=extraction_reply())

    output = await ai_stages.extract.run(PNG, "image/png")

    assert output.vendor == "Acme Cloud"
    assert output.total == 29.0
    assert output.line_items == ITEMS
    body = sent_body(route)
    assert body["model"] == "llama3.2-vision"
    assert body["stream"] is False
    assert body["messages"][0]["images"] == [base64.b64encode(PNG).decode("ascii")]
    assert "vendor" in body["format"]["properties"]


@respx.mock
async def test_extract_renders_pdf_pages_to_png(ai_stages):
    route = respx.post(f"{OLLAMA_URL}/api/chat").mock(return_value=extraction_reply())

    await ai_stages.extract.run(blank_pdf(), "application/pdf")

    images = sent_body(route)["messages"][0]["images"]
    assert len(images) == 1
    assert base64.b64decode(images[0]).startswith(b"\x89PNG")


@respx.mock
async def test_extract_renders_at_most_the_configured_page_count(monkeypatch, ollama_env, helper_config):
    monkeypatch.setenv("INGEST_PDF_MAX_PAGES", "2")
    llm_client = LLMClientManager(helper_config=helper_config).get_client()
    await llm_client.boot()
    route = respx.post(f"{OLLAMA_URL}/api/chat").mock(return_value=extraction_reply())

    await ExtractStage(helper_config, llm_client).run(blank_pdf(pages=3), "application/pdf")

    assert len(sent_body(route)["messages"][0]["images"]) == 2
    await llm_client.close()


@respx.mock
async def test_extract_rejects_unparsable_pdf_before_calling_the_model(ai_stages):
    route = respx.post(f"{OLLAMA_URL}/api/chat").mock(return_value=extraction_reply())

    with pytest.raises(ValueError, match="unparsable"):
        await ai_stages.extract.run(b"%PDF-1.4 truncated", "application/pdf")
    assert not route.called


@pytest.mark.parametrize("reply", [{"vendor": "Acme"}, {"total": 10.0}, {"vendor": "  ", "total": 10.0}])
@respx.mock
async def test_extract_fails_loudly_on_incomplete_data(ai_stages, reply):
    respx.post(f"{OLLAMA_URL}/api/chat").mock(return_value=chat_reply(reply))

    with pytest.raises(ValueError, match="incomplete data"):
        await ai_stages.extract.run(PNG, "image/png")


@respx.mock
async def test_malformed_model_reply(ai_stages):
    respx.post(f"{OLLAMA_URL}/api/chat").mock(return_value=chat_reply("I am not JSON"))

    with pytest.raises(ValueError, match="malformed"):
        await ai_stages.extract.run(PNG, "image/png")


@respx.mock
async def test_backend_error_surfaces_as_client_request_error(ai_stages):
    respx.post(f"{OLLAMA_URL}/api/chat").mock(return_value=httpx.Response(503, text="service unavailable"))

    with pytest.raises(ClientRequestError):
        await ai_stages.summarize.run("Acme", "2023-06-01", 29.0, ITEMS)


##########################################
############### SUMMARIZE ################
##########################################

@respx.mock
async def test_summarize_uses_chat_model(ai_stages):
    route = respx.post(f"{OLLAMA_URL}/api/chat").mock(return_value=chat_reply({"summary": "  Hosting invoice from Acme.  "}))

    summary = await ai_stages.summarize.run("Acme", "2023-06-01", 29.0, ITEMS)

    assert summary == "Hosting invoice from Acme."
    body = sent_body(route)
    assert body["model"] == "llama3.1:8b"
    assert "images" not in body["messages"][0]
    assert "Monthly hosting plan" in body["messages"][0]["content"]


@pytest.mark.parametrize("reply", [{}, {"summary": "   "}])
@respx.mock
async def test_summarize_fails_without_summary(ai_stages, reply):
    respx.post(f"{OLLAMA_URL}/api/chat").mock(return_value=chat_reply(reply))

    with pytest.raises(ValueError):
        await ai_stages.summarize.run("Acme", "2023-06-01", 29.0, ITEMS)


##########################################
############### CATEGORIZE ###############
##########################################

async def test_categorize_without_vendor_or_items_is_uncategorized(ai_stages):
    with respx.mock:
        route = respx.post(f"{OLLAMA_URL}/api/chat")
        assert await ai_stages.categorize.run("", []) == ["Uncategorized"]
        assert not route.called


@pytest.mark.parametrize(
    "reply, expected",
    [
        ({"categories": ["Cloud Services", "Software"]}, ["Cloud Services", "Software"]),
        ({}, ["Needs Review"]),
        ({"categories": []}, []),
    ],
)
@respx.mock
async def test_categorize_replies(ai_stages, reply, expected):
    respx.post(f"{OLLAMA_URL}/api/chat").mock(return_value=chat_reply(reply))

    assert await ai_stages.categorize.run("Acme", ITEMS) == expected


##########################################
############### RECURRENCE ###############
##########################################

async def test_recurrence_without_vendor_or_items(ai_stages):
    with respx.mock:
        route = respx.post(f"{OLLAMA_URL}/api/chat")
        output = await ai_stages.recurrence.run("", [])
        assert not route.called

    assert output.is_likely_recurring is False
    assert output.reasoning == "Insufficient data to determine recurrence."


@pytest.mark.parametrize(
    "reply, recurring, reasoning",
    [
        ({"is_likely_recurring": True, "reasoning": "Monthly plan."}, True, "Monthly plan."),
        ({"is_likely_recurring": True}, True, "AI determined as likely recurring."),
        ({"is_likely_recurring": False, "reasoning": ""}, False, None),
        ({}, False, "AI analysis for recurrence was inconclusive."),
    ],
)
@respx.mock
async def test_recurrence_replies(ai_stages, reply, recurring, reasoning):
    respx.post(f"{OLLAMA_URL}/api/chat").mock(return_value=chat_reply(reply))

    output = await ai_stages.recurrence.run("Acme", ITEMS)

    assert output.is_likely_recurring is recurring
    assert output.reasoning == reasoning


##########################################
################# EMBED ##################
##########################################

@respx.mock
async def test_embed_returns_first_vector(ai_stages):
    route = respx.post(f"{OLLAMA_URL}/api/embed").mock(
        return_value=httpx.Response(200, json={"model": "nomic-embed-text", "embeddings": [[0.1, 0.2, 0.3]]})
    )

    vector = await ai_stages.embed.run("Hosting invoice from Acme.")

    assert vector == [0.1, 0.2, 0.3]
    assert sent_body(route) == {"model": "nomic-embed-text", "input": ["Hosting invoice from Acme."]}


@respx.mock
async def test_embed_truncates_to_configured_length(monkeypatch, ollama_env, helper_config):
    monkeypatch.setenv("EMBED_MODEL_MAX_CHARS", "5")
    embed_client = EmbedClientManager(helper_config=helper_config).get_client()
    await embed_client.boot()
    route = respx.post(f"{OLLAMA_URL}/api/embed").mock(
        return_value=httpx.Response(200, json={"embeddings": [[1.0]]})
    )

    await embed_client.do_embed_text("abcdefghij")

    assert sent_body(route)["input"] == ["abcde"]
    await embed_client.close()


@respx.mock
async def test_embed_without_vectors_raises(ai_stages):
    respx.post(f"{OLLAMA_URL}/api/embed").mock(return_value=httpx.Response(200, json={"embeddings": []}))

    with pytest.raises(ValueError):
        await ai_stages.embed.run("text")


@pytest.mark.parametrize("body", [[[0.1, 0.2]], "embeddings", {"embeddings": "0.1,0.2"}, {"embeddings": [None]}])
@respx.mock
async def test_embed_rejects_unexpected_response_shapes(ai_stages, body):
    respx.post(f"{OLLAMA_URL}/api/embed").mock(return_value=httpx.Response(200, json=body))

    with pytest.raises(ValueError):
        await ai_stages.embed.run("text")


@pytest.mark.parametrize("body", [["not", "an", "object"], {"message": "plain text"}, {"message": {"content": None}}])
@respx.mock
async def test_chat_rejects_unexpected_response_shapes(ai_stages, body):
    respx.post(f"{OLLAMA_URL}/api/chat").mock(return_value=httpx.Response(200, json=body))

    with pytest.raises(ValueError):
        await ai_stages.summarize.run("Acme", "2023-06-01", 29.0, ITEMS)


def test_vision_model_falls_back_to_chat_model(ollama_env, monkeypatch, helper_config):
    monkeypatch.delenv("LLM_VISION_MODEL")

    client = LLMClientOllama(helper_config=helper_config)

    assert client.vision_model == "llama3.1:8b"


@respx.mock
async def test_embed_rejects_vectors_of_unexpected_width(monkeypatch, ollama_env, helper_config):
    monkeypatch.setenv("EMBED_DIMENSIONS", "3")
    embed_client = EmbedClientManager(helper_config=helper_config).get_client()
    await embed_client.boot()
    respx.post(f"{OLLAMA_URL}/api/embed").mock(
        return_value=httpx.Response(200, json={"embeddings": [[0.1, 0.2]]})
    )

    with pytest.raises(ValueError, match="expected 3"):
        await embed_client.do_embed_text("Hosting invoice from Acme.")
    await embed_client.close()


async def test_embed_refuses_blank_text(ai_stages):
    with pytest.raises(ValueError, match="empty text"):
        await ai_stages.embed.run("   ")


@respx.mock
async def test_embed_sends_keep_alive_when_configured(monkeypatch, ollama_env, helper_config):
    monkeypatch.setenv("EMBED_OLLAMA_KEEP_ALIVE", "10m")
    embed_client = EmbedClientManager(helper_config=helper_config).get_client()
    await embed_client.boot()
    route = respx.post(f"{OLLAMA_URL}/api/embed").mock(
        return_value=httpx.Response(200, json={"embeddings": [[1.0, 0.0]]})
    )

    await embed_client.do_embed_text("abc")

    assert sent_body(route)["keep_alive"] == "10m"
    await embed_client.close()


@pytest.mark.parametrize("reply, expected", [
    ('```json\n{"vendor": "Acme"}\n```', '{"vendor": "Acme"}'),
    ('```{"vendor": "Acme"}```', '{"vendor": "Acme"}'),
    ('  {"vendor": "Acme"} ', '{"vendor": "Acme"}'),
])
def test_strip_code_fence(reply, expected):
    assert strip_code_fence(reply) == expected
