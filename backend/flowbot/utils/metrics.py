# /flowbot/utils/metrics.py

from prometheus_client import Counter, Histogram

# This file defines all Prometheus metrics used for application monitoring.
# Centralizing them here makes them easy to find and manage.

# Engine Metrics
bot_messages_counter = Counter('bot_messages_total', 'Inbound messages processed by the bot engine', ['outcome'])
bot_processing_histogram = Histogram('bot_processing_seconds', 'Time spent in process_message')
intents_counter = Counter('bot_intents_detected_total', 'Detected intents', ['intent'])
handoff_counter = Counter('bot_handoffs_total', 'Conversations handed to a human', ['source'])

# Flow Definition Metrics
flow_cache_operations = Counter('flow_cache_operations_total', 'Flow cache lookups', ['status'])
flows_rejected_counter = Counter('flows_rejected_total', 'Flow definitions rejected at load time', ['reason'])

# HTTP Metrics
response_time_histogram = Histogram('response_time_seconds', 'Response time in seconds', ['endpoint'])
