"""Centralized user-facing text for the tin CLI."""

from __future__ import annotations

class Styles:
    ERROR = "red"
    WARNING = "yellow"
    SUCCESS = "green"
    INFO = "dim"
    TITLE = "bold cyan"
    TABLE_HEADER = "bold magenta"


class Messages:
    APP_HELP = "tin: local hybrid search over project documents."
    HELP_INIT = "Initialize a tin project in the current directory."
    HELP_INDEX = "Index project files (runs the embedding pass when configured)."
    HELP_SEARCH = "Keyword search using BM25."
    HELP_VSEARCH = "Vector/semantic search."
    HELP_QUERY_COMMAND = "Hybrid search (BM25 + vector) with optional rerank."
    HELP_STATUS = "Show project index status."
    HELP_QUERY = "Search query."
    HELP_JSON = "Output JSON."
    HELP_FILES = "Output file paths only."
    HELP_MAX_RESULTS = "Maximum number of results."
    HELP_MIN_SCORE = "Minimum score (0..1)."
    HELP_NO_RERANK = "Disable rerank even if configured."
    HELP_EMBED = "Run (or skip) the embedding pass; default embeds when a provider is configured."
    HELP_FORCE = "Re-chunk every file even when unchanged."
    HELP_REEMBED = "Drop and rebuild all embeddings for the configured model."
    HELP_VERBOSE = "Enable debug logging on stderr."

    ERROR_NO_PROJECT = "No tin project found. Run 'tin init' in your project root."
    ERROR_OUTPUT_CONFLICT = "Choose one output mode: --json or --files"
    ERROR_CONFIG_JSON_INVALID = "Config file {path} is not valid JSON: {reason}"
    ERROR_CONFIG_NOT_OBJECT = "Config file {path} must contain a JSON object."
    ERROR_CONFIG_VALUE_INVALID = "Invalid config value for {field}."
    ERROR_FUSION_WEIGHTS = "Fusion weights must not both be zero."
    ERROR_PROVIDER_INVALID = (
        "Unsupported embedding provider '{value}'. Supported providers: {allowed}."
    )
    ERROR_EMBEDDING_NOT_CONFIGURED = (
        "Embedding is not configured. Set TIN_EMBEDDING_API_KEY "
        "(or provider alias: OPENAI_API_KEY / GEMINI_API_KEY)."
    )
    ERROR_EMBEDDING_REQUEST = "Embedding API request failed: {reason}"
    ERROR_EMBEDDING_INCOMPLETE = "Embedding API response had incomplete vectors."
    ERROR_NO_EMBEDDINGS = "Embedding API returned no embeddings."
    ERROR_EMPTY_QUERY_VECTOR = "Embedding API returned an empty query vector."
    ERROR_EMPTY_QUERY = "Query text must not be empty."
    ERROR_RERANK_REQUEST = "Rerank API request failed: {reason}"
    ERROR_RERANK_MISSING_RESULTS = "Rerank API response missing results array."
    ERROR_STORAGE = "Index storage error: {reason}"

    WARNING_EMBEDDING_NOT_CONFIGURED = (
        "Embeddings are not configured, falling back to BM25-only results."
    )
    WARNING_VECTOR_FAILED = "Vector search failed: {reason}. Falling back to BM25-only results."
    WARNING_RERANK_NOT_CONFIGURED = (
        "Rerank is not configured; returning fused BM25+vector results."
    )
    WARNING_RERANK_FAILED = "Rerank failed: {reason}. Returning fused BM25+vector results."
    WARNING_EMBEDDING_SKIPPED = "Embedding pass failed: {reason}. Search results may be partial."
    WARNING_PREFIX = "Warning: "

    INFO_INIT_CREATED = "Initialized tin project at {path}"
    INFO_INIT_EXISTS = "tin project already exists at {path}"
    INFO_CONFIG_CREATED = "Created {path}"
    INFO_INDEX_SUMMARY = (
        "Indexed {scanned} files: {added} added, {updated} updated, "
        "{skipped} skipped, {removed} removed"
    )
    INFO_INDEX_ERRORS = ", {errors} errors"
    INFO_EMBEDDING_SUMMARY = "Embeddings: {embedded} chunks embedded ({model})"
    INFO_REFRESH_SUMMARY = (
        "Refreshed index: {added} added, {updated} updated, {removed} removed "
        "({files} files, {chunks} chunks)"
    )
    INFO_NO_RESULTS = "No results for: {query}"
    INFO_RESULTS_FOR = "Results for: {query}"

    TABLE_HEADER_INDEX = "#"
    TABLE_HEADER_SCORE = "Score"
    TABLE_HEADER_PATH = "Path"
    TABLE_HEADER_LINES = "Lines"
    TABLE_HEADER_SOURCE = "Source"
    TABLE_HEADER_PREVIEW = "Preview"

    STATUS_PROJECT = "Project path"
    STATUS_TIN = "Tin path"
    STATUS_INDEX = "Index path"
    STATUS_FILES = "Indexed files"
    STATUS_CHUNKS = "Indexed chunks"
    STATUS_TIME = "Indexed time"
    STATUS_PROVIDER = "Embedding provider"
    STATUS_API_URL = "Embedding API URL"
    STATUS_MODEL = "Embedding model name"
    STATUS_API_KEY = "Embedding API key"
    STATUS_EMBEDDED = "Embedded chunks"
    STATUS_NEVER = "never"
