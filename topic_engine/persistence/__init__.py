from .model_codec import FORMAT_VERSION, ModelCodec

__all__ = ["FORMAT_VERSION", "ModelCodec"]
