"""Real-time voice conversation core: chunking, pacing, barge-in and turn orchestration."""
