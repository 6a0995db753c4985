"""
core/pipeline — Pure pieces of the audio analysis pipeline.

Run state machine, progress channel, cancellation, prompt construction and
result compilation. Nothing here touches files, the network or librosa;
the stages and orchestrator that do live in ingestion/.
"""
