"""CareBridge healthcare orchestration backend."""
