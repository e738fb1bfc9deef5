"""Coach AI: provider orchestration and resilience for interview coaching."""
