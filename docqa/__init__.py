"""Document Q&A service: upload documents, ask questions, get cited answers."""
