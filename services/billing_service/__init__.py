"""gRPC billing service acknowledging billing account requests."""
