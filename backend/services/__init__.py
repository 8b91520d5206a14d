"""
Parley Services - shared infrastructure for the decision pipeline.

- config_store: JSON-backed GlobalSettings, rules and strategy cards
- llm_client: OpenAI-compatible client (DashScope/Qwen, llama-server)
- model_gateway: bounded, retried model invocation with latency capture
- json_extract: JSON object extraction from model output
- history: markdown transcript archive
"""
