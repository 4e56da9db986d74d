"""Core building blocks shared by the descriptor specs and the runtime."""
