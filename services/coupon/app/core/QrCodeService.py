"""
Coupon QR images.
The QR encodes the merchant verification URL of the coupon code.
"""
import logging

from libs.common.qr import coupon_verification_url, render_qr_png
from libs.schemas import ClaimedCoupon

from services.coupon.app.db.repositories.coupons import ClaimedCouponRepositoryPort
from services.coupon.app.storage.FileStorage import FileStorage

logger = logging.getLogger(__name__)


class QrCodeService:
    def __init__(self, coupon_repository: ClaimedCouponRepositoryPort, file_storage: FileStorage | None = None):
        self.coupon_repository = coupon_repository
        self.file_storage = file_storage or FileStorage()

    @staticmethod
    def render(code: str) -> bytes:
        return render_qr_png(coupon_verification_url(code))

    def image(self, coupon: ClaimedCoupon) -> bytes:
        """Stored PNG when present, otherwise rendered on the fly."""
        if coupon.qrCodeUrl:
            stored = self.file_storage.read_file(coupon.qrCodeUrl)
            if stored is not None:
                return stored
            logger.warning("QR image %s for coupon %s is missing, rendering", coupon.qrCodeUrl, coupon.couponId)
        return self.render(coupon.uniqueCode)

    async def regenerate(self, coupon: ClaimedCoupon) -> ClaimedCoupon:
        """Render and store a fresh QR image, replacing the previous one."""
        file_id, _ = self.file_storage.save_file(self.render(coupon.uniqueCode))
        await self.coupon_repository.set_qr(coupon.couponId, file_id)
        if coupon.qrCodeUrl:
            self.file_storage.delete_file(coupon.qrCodeUrl)
        return coupon.model_copy(update={"qrCodeUrl": file_id})
