"""Identity engine: gallery, multi-angle enrollment, matcher and recognition throttle.

Detection and embedding are injected as plain callables; `recognizer.InsightFaceEngine`
is the default provider for both.
"""
