"""Wire an orchestrator from Settings."""

from typing import Optional

from research_pipeline.config.context import load_context
from research_pipeline.config.settings import Settings, get_settings
from research_pipeline.config.stage_config import load_stage_configurations
from research_pipeline.connectors.pmc import PmcClient
from research_pipeline.connectors.registry import build_default_connectors
from research_pipeline.llm.client import GenerativeClient, OllamaGenerativeClient
from research_pipeline.pipeline.orchestrator import PipelineOrchestrator
from research_pipeline.store.item_store import ItemStore


def build_orchestrator(
    settings: Optional[Settings] = None,
    client: Optional[GenerativeClient] = None,
) -> PipelineOrchestrator:
    """Orchestrator over the configured database, the bundled connectors and Ollama.

    The context's research domains seed the store on first use.
    """
    settings = settings or get_settings()
    store = ItemStore.from_url(
        settings.database_url,
        similarity_threshold=settings.dedup_similarity_threshold,
        min_title_length=settings.dedup_min_title_length,
    )
    context = load_context(settings.context_file)
    store.seed_domains(context.domains)

    connectors = build_default_connectors(settings)
    full_text = None
    if settings.full_text_enrichment:
        # PMC and PubMed share the NCBI request budget
        pubmed = connectors.connectors.get("pubmed")
        full_text = PmcClient(
            min_interval=settings.pubmed_min_interval,
            timeout=settings.connector_timeout,
            api_key=settings.ncbi_api_key,
            limiter=pubmed.limiter if pubmed is not None else None,
        )

    return PipelineOrchestrator(
        store=store,
        connectors=connectors,
        client=client or OllamaGenerativeClient(),
        settings=settings,
        context=context,
        stage_configs=load_stage_configurations(settings, settings.stage_config_dir),
        full_text=full_text,
    )
