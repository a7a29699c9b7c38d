"""OpenTelemetry bootstrap, resource identity, exporters, spans and metrics."""
