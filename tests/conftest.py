import os
import tempfile

# Settings are read once at import time; keep test runs off real services and
# out of the working tree's log directory.
os.environ["LOG_DIR"] = tempfile.mkdtemp(prefix="research-logs-")
os.environ["OPENROUTER_API_KEY"] = "test"
os.environ["TAVILY_API_KEY"] = ""
os.environ["BRAVE_API_KEY"] = ""
os.environ["SEARCH_PROVIDER"] = "tavily"
os.environ["EMBEDDING_BACKEND"] = "hashing"
os.environ["JOB_STORE_BACKEND"] = "memory"
